import base64
import binascii
import io
import os

from PIL import Image

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


def encode(file):
    """Read the full contents of ``file`` and return them as base64 text.

    ``file`` may be raw bytes, a filesystem path, or anything with ``read()``.
    The result has no ``data:<mime>;base64,`` prefix. Read failures surface as
    ``IOError`` from the underlying open/read.
    """
    if isinstance(file, (bytes, bytearray, memoryview)):
        raw = bytes(file)
    elif isinstance(file, (str, os.PathLike)):
        with open(file, "rb") as f:
            raw = f.read()
    else:
        raw = file.read()
    return base64.b64encode(raw).decode("utf-8")


def to_data_url(media_type, b64):
    return f"data:{media_type};base64,{b64}"


def from_data_url(data_url):
    """Split a base64 data URL into ``(media_type, raw_bytes)``."""
    try:
        header, b64 = data_url.split(",", 1)
        scheme, params = header.split(":", 1)
        media_type, encoding = params.split(";", 1)
        if scheme != "data" or encoding != "base64":
            raise ValueError(f"Not a base64 data URL: {header}")
        return media_type, base64.b64decode(b64, validate=True)
    except (AttributeError, binascii.Error) as e:
        raise ValueError(f"Invalid image data: {e}") from e


def as_png(raw):
    """Return ``raw`` image bytes re-encoded as PNG."""
    if raw.startswith(PNG_SIGNATURE):
        return raw
    img = Image.open(io.BytesIO(raw))
    if img.mode not in ("RGB", "RGBA", "L", "LA", "P"):
        img = img.convert("RGBA")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()
