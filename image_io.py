import base64
import io
import logging
from dataclasses import dataclass

from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)


class FileReadError(Exception):
    user_message = "Failed to read file."


@dataclass(frozen=True)
class ImagePayload:
    """Uploaded image held in memory: raw bytes, MIME type and a data URL for display."""
    data: bytes
    mime_type: str
    width: int
    height: int

    @property
    def data_url(self) -> str:
        return f"data:{self.mime_type};base64," + base64.b64encode(self.data).decode("ascii")


def read_image(image_bytes: bytes, filename: str = "") -> ImagePayload:
    """
    Decode upload bytes far enough to know they are a raster image.
    The original bytes are kept untouched; nothing is resized or re-encoded.
    """
    if not image_bytes:
        raise FileReadError(f"empty upload: {filename!r}")
    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            fmt = img.format
            width, height = img.size
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as e:
        raise FileReadError(f"cannot decode {filename!r}: {e}") from e

    # multi-picture JPEGs from phone cameras are plain JPEG to the model
    if fmt == "MPO":
        fmt = "JPEG"
    mime_type = Image.MIME.get(fmt or "", "image/jpeg")
    logger.debug("read %s: %s %dx%d, %d bytes", filename or "<upload>", mime_type, width, height, len(image_bytes))
    return ImagePayload(data=image_bytes, mime_type=mime_type, width=width, height=height)
