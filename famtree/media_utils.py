"""Media utilities for the upload layout, base64 embedding and thumbnails."""
from __future__ import annotations

import base64
import binascii
import io
import os
import secrets
import string
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from PIL import Image, ImageOps, UnidentifiedImageError

from .errors import ValidationError

THUMBNAIL_SIZE = (120, 120)
THUMBNAIL_QUALITY = 80
UPLOAD_THUMBNAIL_QUALITY = 85
ORIGINAL_QUALITY = 90

ORIGINALS_URL_PREFIX = "/uploads/originals/"
THUMBNAILS_URL_PREFIX = "/uploads/thumbnails/"

_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits
_BASE64_WHITESPACE = {ord(c): None for c in " \t\r\n\f\v"}


@dataclass
class UploadPaths:
    root: Path

    @property
    def originals_dir(self) -> Path:
        return self.root / "originals"

    @property
    def thumbnails_dir(self) -> Path:
        return self.root / "thumbnails"

    def original(self, filename: str) -> Path:
        return self.originals_dir / filename

    def thumbnail(self, filename: str) -> Path:
        return self.thumbnails_dir / filename

    def ensure(self) -> None:
        self.originals_dir.mkdir(parents=True, exist_ok=True)
        self.thumbnails_dir.mkdir(parents=True, exist_ok=True)


def original_url(filename: str) -> str:
    return f"{ORIGINALS_URL_PREFIX}{filename}"


def thumbnail_url(filename: str) -> str:
    return f"{THUMBNAILS_URL_PREFIX}{filename}"


def filename_from_url(url: str | None) -> Optional[str]:
    """Stored file name for an image URL; both variants share it."""
    if not url:
        return None
    name = os.path.basename(url.replace("\\", "/"))
    if name in ("", ".", "..") or "\x00" in name:
        return None
    return name


def new_upload_filename(ext: str = ".jpg") -> str:
    """Timestamp plus random suffix, e.g. ``1718000000000-k3j9x2.png``."""
    ext = (ext or "").lower()
    if ext and not ext.startswith("."):
        ext = f".{ext}"
    suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(8))
    return f"{int(time.time() * 1000)}-{suffix}{ext}"


def _to_rgb(img: Image.Image) -> Image.Image:
    # Flatten transparency onto white before JPEG encoding
    if img.mode in ('RGBA', 'LA', 'P'):
        background = Image.new('RGB', img.size, (255, 255, 255))
        if img.mode == 'P':
            img = img.convert('RGBA')
        background.paste(img, mask=img.split()[-1] if img.mode in ('RGBA', 'LA') else None)
        return background
    if img.mode != 'RGB':
        return img.convert('RGB')
    return img


def save_jpeg(content: bytes, dest: Path, quality: int = ORIGINAL_QUALITY) -> None:
    """Re-encode arbitrary image bytes as JPEG."""
    dest.parent.mkdir(parents=True, exist_ok=True)
    with Image.open(io.BytesIO(content)) as img:
        _to_rgb(img).save(dest, "JPEG", quality=quality, optimize=True)


def make_thumbnail(content: bytes, dest: Path, quality: int = THUMBNAIL_QUALITY) -> Path:
    """
    Cover-crop image bytes to THUMBNAIL_SIZE and write them as JPEG.

    Raises ValidationError when the bytes are not a decodable image.
    """
    dest.parent.mkdir(parents=True, exist_ok=True)
    try:
        with Image.open(io.BytesIO(content)) as img:
            thumb = ImageOps.fit(_to_rgb(img), THUMBNAIL_SIZE, Image.Resampling.LANCZOS)
            thumb.save(dest, "JPEG", quality=quality, optimize=True)
    except (UnidentifiedImageError, Image.DecompressionBombError) as exc:
        raise ValidationError(f"Unreadable image data for {dest.name}") from exc
    return dest


def decode_base64(data: str) -> bytes:
    """Strict base64 decode; line breaks from MIME-style wrapping are ignored."""
    try:
        return base64.b64decode(data.translate(_BASE64_WHITESPACE), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValidationError("Malformed base64 image payload") from exc


class ImageCodec:
    """Converts stored image files to and from base64 text."""

    def read_bytes(self, path: Path) -> bytes:
        with open(path, "rb") as fh:
            return fh.read()

    def encode(self, path: Path) -> str:
        """Base64 of the whole file. Raises FileNotFoundError when missing."""
        return base64.b64encode(self.read_bytes(Path(path))).decode("ascii")

    def decode(self, data: str, dest: Path) -> bool:
        """
        Write decoded bytes to ``dest`` unless a file is already there.

        Existing files are never replaced. Returns True when bytes were written.
        """
        dest = Path(dest)
        content = decode_base64(data)
        if dest.exists():
            return False
        dest.parent.mkdir(parents=True, exist_ok=True)
        with open(dest, "wb") as out:
            out.write(content)
        return True
