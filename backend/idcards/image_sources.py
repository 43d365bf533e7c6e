from __future__ import annotations

import base64
import binascii
from io import BytesIO
from urllib.error import URLError
from urllib.parse import unquote_to_bytes
from urllib.request import Request, urlopen

from django.core.exceptions import SuspiciousFileOperation
from django.core.files.storage import default_storage
from PIL import Image, UnidentifiedImageError

MAX_IMAGE_BYTES = 10 * 1024 * 1024


class ImageLoadError(Exception):
    pass


def _decode_data_uri(source: str) -> bytes:
    header, _, data = source.partition(",")
    if not data:
        raise ImageLoadError("Data URI has no payload.")
    try:
        if header.endswith(";base64"):
            return base64.b64decode(data, validate=False)
        return unquote_to_bytes(data)
    except (binascii.Error, ValueError) as exc:
        raise ImageLoadError("Data URI payload is not valid base64.") from exc


class ImageLoader:
    """Fetch an image reference into a Pillow image.

    Accepts ``data:`` URIs, ``http(s)`` URLs and paths below ``media_url``
    served from the default storage.
    """

    def __init__(self, *, timeout_seconds: float = 10, media_url: str | None = None):
        self.timeout_seconds = timeout_seconds
        self.media_url = media_url

    def _read_bytes(self, source: str) -> bytes:
        if source.startswith("data:"):
            return _decode_data_uri(source)
        if source.startswith("http://") or source.startswith("https://"):
            request = Request(source, headers={"User-Agent": "idcards-renderer/1.0"})
            try:
                with urlopen(request, timeout=self.timeout_seconds) as response:
                    return response.read(MAX_IMAGE_BYTES + 1)
            except (URLError, OSError, ValueError) as exc:
                raise ImageLoadError(f"Could not fetch {source}: {exc}") from exc
        if self.media_url and source.startswith(self.media_url):
            relative_name = source[len(self.media_url):].lstrip("/")
            try:
                with default_storage.open(relative_name, "rb") as image_stream:
                    return image_stream.read()
            except (OSError, SuspiciousFileOperation) as exc:
                raise ImageLoadError(f"Could not open {relative_name}: {exc}") from exc
        raise ImageLoadError(f"Unsupported image source '{source[:64]}'.")

    def __call__(self, source: str) -> Image.Image:
        image_bytes = self._read_bytes(source)
        if not image_bytes:
            raise ImageLoadError("Image source is empty.")
        if len(image_bytes) > MAX_IMAGE_BYTES:
            raise ImageLoadError("Image exceeds the maximum allowed size.")
        try:
            image = Image.open(BytesIO(image_bytes))
            image.load()
        except (UnidentifiedImageError, OSError) as exc:
            raise ImageLoadError("Image data could not be decoded.") from exc
        return image.convert("RGBA")
