"""
avatars/store.py -- On-disk avatar renditions backed by Pillow.

An upload is validated and then written as three square WebP renditions:

    <root>/<user_id>/avatar_small.webp    48 x 48   (roster rows)
    <root>/<user_id>/avatar_medium.webp  128 x 128  (selected member card)
    <root>/<user_id>/avatar_large.webp   224 x 224  (own profile)

The user record stores only the public prefix "<url_prefix>/<user_id>/";
clients append the rendition file name. Dimensions are checked on the decoded
pixels, never on sizes reported by the client.

Usage:
    store = AvatarStore("/var/lib/crewroster/avatars", "/avatars", max_bytes=5 * 1024 * 1024)
    mime, raw = parse_data_url(body.file)
    prefix = store.save(user.id, raw, mime)
"""

from __future__ import annotations

import base64
import binascii
import logging
import shutil
from io import BytesIO
from pathlib import Path

from PIL import Image, UnidentifiedImageError
from PIL.ImageOps import exif_transpose

logger = logging.getLogger("crewroster.avatars")

AVATAR_SIZES: dict[str, int] = {
    "small": 48,
    "medium": 128,
    "large": 224,
}
MIN_AVATAR_SIZE = AVATAR_SIZES["large"]
# Decoded-size ceiling (RGB at this size is ~75 MB), checked before pixels are decoded.
MAX_AVATAR_PIXELS = 5000 * 5000

ALLOWED_CONTENT_TYPES: frozenset[str] = frozenset({"image/jpeg", "image/jpg", "image/webp", "image/png"})


class AvatarError(ValueError):
    """Raised when an upload is rejected. code is machine-readable."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


def rendition_name(size: str) -> str:
    return f"avatar_{size}.webp"


def parse_data_url(data_url: str) -> tuple[str, bytes]:
    """Split a "data:<mime>;base64,<payload>" URL into (mime, raw bytes)."""
    if not data_url.startswith("data:") or "," not in data_url:
        raise AvatarError("invalid_data_url", "Avatar must be sent as a base64 data URL.")
    header, payload = data_url[5:].split(",", 1)
    parts = header.split(";")
    if "base64" not in parts[1:]:
        raise AvatarError("invalid_data_url", "Avatar must be sent as a base64 data URL.")
    try:
        raw = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise AvatarError("invalid_data_url", "Avatar payload is not valid base64.") from exc
    return parts[0].lower(), raw


def _square(image: Image.Image) -> Image.Image:
    """Center-crop to the largest square."""
    width, height = image.size
    side = min(width, height)
    left = (width - side) // 2
    top = (height - side) // 2
    return image.crop((left, top, left + side, top + side))


class AvatarStore:
    def __init__(
        self,
        root: str | Path,
        url_prefix: str = "/avatars",
        max_bytes: int = 5 * 1024 * 1024,
        max_pixels: int = MAX_AVATAR_PIXELS,
    ) -> None:
        self.root = Path(root)
        self.url_prefix = url_prefix.rstrip("/")
        self.max_bytes = max_bytes
        self.max_pixels = max_pixels

    def user_dir(self, user_id: int) -> Path:
        return self.root / str(user_id)

    def url_for(self, user_id: int) -> str:
        return f"{self.url_prefix}/{user_id}/"

    def _open(self, raw: bytes, content_type: str) -> Image.Image:
        if (content_type or "").lower() not in ALLOWED_CONTENT_TYPES:
            raise AvatarError("unsupported_type", "Avatar must be a JPEG, PNG or WebP image.")
        if len(raw) > self.max_bytes:
            raise AvatarError("too_large", f"Avatar is too large, max {self.max_bytes // (1024 * 1024)} MB.")
        try:
            # open() only parses the header; pixels are decoded by load().
            image = Image.open(BytesIO(raw))
        except Image.DecompressionBombError as exc:
            raise AvatarError("too_large", "Avatar dimensions are too large.") from exc
        except (UnidentifiedImageError, OSError, ValueError) as exc:
            raise AvatarError("unreadable", "Avatar could not be decoded as an image.") from exc
        if image.width * image.height > self.max_pixels:
            raise AvatarError("too_large", "Avatar dimensions are too large.")
        try:
            image.load()
        except (UnidentifiedImageError, OSError, ValueError) as exc:
            raise AvatarError("unreadable", "Avatar could not be decoded as an image.") from exc
        return image

    def save(self, user_id: int, raw: bytes, content_type: str) -> str:
        """Validate an upload, write all renditions, and return the public prefix.

        Raises AvatarError on an unsupported type, oversize payload, undecodable
        data, or an image smaller than MIN_AVATAR_SIZE on either side.
        """
        image = self._open(raw, content_type)
        # processes rotation if present
        image = exif_transpose(image)
        if image.width < MIN_AVATAR_SIZE or image.height < MIN_AVATAR_SIZE:
            raise AvatarError(
                "too_small", f"Image is too small, min {MIN_AVATAR_SIZE}x{MIN_AVATAR_SIZE}"
            )
        if image.mode not in ("RGB", "L"):
            image = image.convert("RGB")
        square = _square(image)

        target = self.user_dir(user_id)
        target.mkdir(parents=True, exist_ok=True)
        for size_name, px in AVATAR_SIZES.items():
            rendition = square.resize((px, px), Image.Resampling.LANCZOS)
            rendition.save(target / rendition_name(size_name), format="WEBP", quality=85)
        logger.info("Avatar renditions written for user %d (%dx%d source)", user_id, image.width, image.height)
        return self.url_for(user_id)

    def delete(self, user_id: int) -> bool:
        target = self.user_dir(user_id)
        if not target.exists():
            return False
        shutil.rmtree(target)
        return True
