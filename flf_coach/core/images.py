import base64
import io
from typing import Optional, Union

from PIL import Image, ImageOps, UnidentifiedImageError

MAX_IMAGE_SIDE = 1024
JPEG_QUALITY = 75
DEFAULT_IMAGE_MIME = "image/jpeg"


def normalize_image_data_url(image_base64: Optional[str]) -> Optional[str]:
    """Return a data URI for the provider, accepting payloads with or without a data: prefix."""
    if not isinstance(image_base64, str):
        return None
    value = image_base64.strip()
    if not value:
        return None
    if value.startswith("data:"):
        return value
    return f"data:{DEFAULT_IMAGE_MIME};base64,{value}"


def compress_and_encode_image(source: Union[bytes, Image.Image], max_side: int = MAX_IMAGE_SIDE) -> Optional[str]:
    """Downscale to max_side on the longer edge and return base64 JPEG without a prefix."""
    try:
        img = Image.open(io.BytesIO(source)) if isinstance(source, (bytes, bytearray)) else source
        img = ImageOps.exif_transpose(img)
        if img.mode != "RGB":
            img = img.convert("RGB")
        # thumbnail only ever shrinks, so small photos keep their size.
        img.thumbnail((max_side, max_side))
        buf = io.BytesIO()
        img.save(buf, format="JPEG", quality=JPEG_QUALITY)
    except (UnidentifiedImageError, OSError, ValueError):
        return None
    return base64.b64encode(buf.getvalue()).decode("ascii")
