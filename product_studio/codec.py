"""
Image codec: upload bytes -> RasterImage -> cropped EncodedImage.

Decoding trusts the bytes, not the declared MIME type; the declared type only
gates the upload and picks the output format when the crop is re-encoded.
"""

import base64
import binascii
import math
from io import BytesIO
from typing import Optional, Tuple

from PIL import Image, ImageOps

from product_studio.config import MAX_UPLOAD_MB_DEFAULT, SUPPORTED_MIME_TYPES
from product_studio.errors import (
    ContextUnavailable,
    CropRegionEmpty,
    EncodeFailed,
    FileTooLarge,
    UnsupportedFormat,
)
from product_studio.logger import get_logger
from product_studio.models import CropRegion, EncodedImage, RasterImage

logger = get_logger("codec")

_PIL_FORMATS = {
    "image/jpeg": "JPEG",
    "image/png": "PNG",
    "image/webp": "WEBP",
}

# Float noise from percent -> pixel conversion must not cost a whole pixel
_FLOOR_EPSILON = 1e-6


def normalize_mime(mime_type: Optional[str]) -> str:
    if not mime_type:
        return ""
    mime = mime_type.split(";", 1)[0].strip().lower()
    if mime == "image/jpg":
        return "image/jpeg"
    return mime


def parse_image_payload(payload: str, mime_type: Optional[str] = None) -> Tuple[bytes, str]:
    """Accept raw base64 or a ``data:<mime>;base64,<payload>`` URL.

    The MIME type embedded in a data URL wins over ``mime_type``.
    """
    data = payload.strip()
    mime = normalize_mime(mime_type)
    if data.startswith("data:"):
        header, _, data = data.partition(",")
        embedded = header[len("data:"):].split(";", 1)[0]
        if embedded:
            mime = normalize_mime(embedded)
    try:
        return base64.b64decode(data), mime
    except (binascii.Error, ValueError):
        raise UnsupportedFormat("Invalid image base64. Expect raw base64 (or data URL) of JPEG, PNG or WEBP.")


def decode(data: bytes, declared_mime_type: Optional[str], max_bytes: Optional[int] = None) -> RasterImage:
    if max_bytes is None:
        max_bytes = MAX_UPLOAD_MB_DEFAULT * 1024 * 1024
    mime = normalize_mime(declared_mime_type)

    if mime not in SUPPORTED_MIME_TYPES:
        logger.warning("rejected upload mime=%s", declared_mime_type)
        raise UnsupportedFormat("Unsupported file type. Please upload a JPEG, PNG, or WEBP image.")
    if len(data) > max_bytes:
        limit_mb = max_bytes / (1024 * 1024)
        logger.warning("rejected upload size=%s limit=%s", len(data), max_bytes)
        raise FileTooLarge(f"File is too large. Please upload an image smaller than {limit_mb:g}MB.")
    if not data:
        raise UnsupportedFormat("Empty image payload.")

    try:
        img = Image.open(BytesIO(data))
        img.load()
    except Image.DecompressionBombError:
        logger.warning("rejected upload: pixel count over decode limit")
        raise FileTooLarge("Image resolution is too large to process safely.")
    except (OSError, SyntaxError, ValueError) as e:
        logger.warning("decode failed mime=%s: %s", mime, e)
        raise UnsupportedFormat("Could not read the image. Please try a different file.")

    # Browsers render with EXIF orientation applied, so natural size must too
    img = ImageOps.exif_transpose(img)
    logger.info("decoded %s %sx%s mode=%s", mime, img.width, img.height, img.mode)
    return RasterImage(
        pixels=img,
        mime_type=mime,
        displayed_width=float(img.width),
        displayed_height=float(img.height),
    )


def _surface_mode(mime: str) -> str:
    return "RGB" if mime == "image/jpeg" else "RGBA"


def crop_and_encode(image: RasterImage, crop: CropRegion, output_mime_type: str) -> EncodedImage:
    mime = normalize_mime(output_mime_type)
    fmt = _PIL_FORMATS.get(mime)
    if fmt is None:
        raise EncodeFailed(f"Cannot encode image as {output_mime_type}.")

    region = crop.to_pixels(image.displayed_width, image.displayed_height)
    scale_x, scale_y = image.scale_factor

    # Floor, not round: the output must never reach past the source bounds
    out_w = math.floor(region.width * scale_x + _FLOOR_EPSILON)
    out_h = math.floor(region.height * scale_y + _FLOOR_EPSILON)
    if out_w <= 0 or out_h <= 0:
        logger.warning("empty crop region=%s scale=(%.4f, %.4f)", region, scale_x, scale_y)
        raise CropRegionEmpty("The crop area is empty. Select a larger area and try again.")

    left = math.floor(region.x * scale_x + _FLOOR_EPSILON)
    top = math.floor(region.y * scale_y + _FLOOR_EPSILON)

    try:
        mode = _surface_mode(mime)
        src = image.pixels if image.pixels.mode == mode else image.pixels.convert(mode)
        # Straight region blit; anything outside the source stays empty
        surface = src.crop((left, top, left + out_w, top + out_h))
    except (MemoryError, OSError, ValueError) as e:
        logger.error("could not prepare %sx%s output surface: %s", out_w, out_h, e)
        raise ContextUnavailable("Could not prepare the image for cropping.")

    save_kwargs = {}
    if fmt == "JPEG":
        save_kwargs = {"quality": 100, "subsampling": 0}
    elif fmt == "WEBP":
        save_kwargs = {"quality": 100}

    buf = BytesIO()
    try:
        surface.save(buf, format=fmt, **save_kwargs)
    except (KeyError, OSError, ValueError) as e:
        logger.error("encode to %s failed: %s", mime, e)
        raise EncodeFailed("Failed to encode the cropped image.")
    out = buf.getvalue()
    if not out:
        raise EncodeFailed("Failed to encode the cropped image.")

    logger.info(
        "cropped (%s, %s, %s, %s) -> %sx%s %s %s bytes",
        left, top, out_w, out_h, surface.width, surface.height, mime, len(out),
    )
    return EncodedImage(data=out, mime_type=mime)


def to_portable_text(encoded: EncodedImage) -> str:
    return encoded.to_portable_text()


def to_data_uri(encoded: EncodedImage) -> str:
    return encoded.data_uri
