"""
OCR Service — extracts a plain-text transcript from a receipt image with
Tesseract.  The transcript is handed to the extraction service as-is; no
parsing happens here.

Progress is reported through an optional callback as fractions in [0, 1].
pytesseract runs Tesseract as a single subprocess call, so progress advances
per pipeline stage (decode → preprocess → recognize) rather than per line.
"""
import io
import logging
from typing import Callable, Optional

import numpy as np
import pytesseract
from PIL import Image, ImageEnhance, ImageFilter, ImageOps, UnidentifiedImageError

logger = logging.getLogger("receipt_analyzer.ocr")

# Register HEIC/HEIF support via pillow-heif if available
try:
    from pillow_heif import register_heif_opener
    register_heif_opener()
    HEIF_AVAILABLE = True
except ImportError:
    HEIF_AVAILABLE = False
    logger.info("pillow-heif not installed — HEIC files will not be supported")

DEFAULT_LANG = "eng"

# Characters a receipt transcript may contain.  Quotes are left out: the config
# string is shell-split by pytesseract.
CHAR_WHITELIST = (
    "0123456789abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ"
    "$%&*()_+-=[]{}|;:,./<>?@# "
)

# --psm 6: assume a single uniform block of text (a receipt column)
TESSERACT_CONFIG = (
    "--psm 6 -c preserve_interword_spaces=1 "
    f"-c tessedit_char_whitelist='{CHAR_WHITELIST}'"
)

ProgressCallback = Callable[[float], None]


class OCRError(Exception):
    """Raised when an image cannot be decoded or Tesseract fails."""
    pass


def preprocess_image(image: Image.Image) -> Image.Image:
    """
    Improve OCR accuracy by preprocessing the receipt image:
    - Convert to grayscale
    - Upscale if small
    - Invert dark-background / white-text bands (e.g. highlighted totals)
    - Enhance contrast and sharpen
    """
    img = image.convert("L")

    w, h = img.size
    if w < 800:
        scale = 800 / w
        img = img.resize((int(w * scale), int(h * scale)), Image.LANCZOS)

    # Scan horizontal bands; a band averaging below 80 is mostly dark, so
    # invert it so Tesseract sees black-on-white text.
    arr = np.array(img)
    band_height = max(1, arr.shape[0] // 40)
    for y in range(0, arr.shape[0], band_height):
        band = arr[y:y + band_height, :]
        if band.mean() < 80:
            arr[y:y + band_height, :] = 255 - band
    img = Image.fromarray(arr)

    img = ImageEnhance.Contrast(img).enhance(2.0)
    img = img.filter(ImageFilter.SHARPEN)
    return img


def load_image(image_bytes: bytes) -> Image.Image:
    """Decode image bytes, honouring EXIF orientation.  Raises OCRError."""
    try:
        image = Image.open(io.BytesIO(image_bytes))
        image = ImageOps.exif_transpose(image)
    except (UnidentifiedImageError, OSError) as e:
        msg = str(e)
        if not HEIF_AVAILABLE and ("heif" in msg.lower() or "heic" in msg.lower()):
            raise OCRError("HEIC/HEIF files require pillow-heif") from e
        raise OCRError(f"Cannot open image: {msg}") from e

    # Palette/CMYK/HEIF modes → RGB for Tesseract compatibility
    if image.mode not in ("RGB", "L", "RGBA"):
        image = image.convert("RGB")
    return image


def extract_text_from_image(
    image_bytes: bytes,
    lang: str = DEFAULT_LANG,
    on_progress: Optional[ProgressCallback] = None,
) -> str:
    """
    Run Tesseract OCR on image bytes and return the transcript (may be empty).
    Supports JPEG, PNG, WEBP, and HEIC/HEIF (with pillow-heif installed).
    """
    def report(fraction: float):
        if on_progress is not None:
            on_progress(fraction)

    report(0.0)
    image = load_image(image_bytes)
    report(0.2)

    processed = preprocess_image(image)
    report(0.4)

    try:
        text = pytesseract.image_to_string(processed, lang=lang, config=TESSERACT_CONFIG)
    except pytesseract.TesseractNotFoundError as e:
        raise OCRError("tesseract binary not found in PATH") from e
    except pytesseract.TesseractError as e:
        raise OCRError(f"Tesseract failed: {e.message}") from e

    report(1.0)
    logger.info("OCR extracted %d chars", len(text))
    return text.strip()
