import hashlib
import io
import logging
import os
import posixpath
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

from PIL import Image, UnidentifiedImageError

from hearth.errors import WriteError

logger = logging.getLogger(__name__)

MEDIA_TYPE_EXTENSIONS = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/webp": ".webp",
    "image/svg+xml": ".svg",
    "image/x-icon": ".ico",
    "image/vnd.microsoft.icon": ".ico",
    "image/gif": ".gif",
}

IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".gif", ".ico", ".svg", ".webp", ".bmp"}

PIL_FORMAT_EXTENSIONS = {
    "PNG": ".png",
    "JPEG": ".jpg",
    "GIF": ".gif",
    "ICO": ".ico",
    "WEBP": ".webp",
    "BMP": ".bmp",
}

DEFAULT_EXTENSION = ".ico"


def extension_for_media_type(media_type: str) -> str:
    """Extension for a known image media type, "" otherwise."""
    media_type = (media_type or "").split(";", 1)[0].strip().lower()
    return MEDIA_TYPE_EXTENSIONS.get(media_type, "")


def sniff_extension(data: bytes) -> str:
    head = data[:1024].lstrip()
    if head.startswith(b"<") and (b"<svg" in head.lower() or head.startswith(b"<?xml")):
        return ".svg"
    try:
        with Image.open(io.BytesIO(data)) as img:
            return PIL_FORMAT_EXTENSIONS.get(img.format or "", "")
    except (UnidentifiedImageError, OSError, ValueError):
        return ""


def infer_extension(content_type: str, final_url: str, data: bytes) -> str:
    """Best-effort extension: declared type, then URL path, then the bytes."""
    ext = extension_for_media_type(content_type)
    if ext:
        return ext
    ext = posixpath.splitext(urlparse(final_url).path)[1].lower()
    if ext in IMAGE_EXTENSIONS:
        return ext
    return sniff_extension(data) or DEFAULT_EXTENSION


def content_digest(data: bytes, salt: str = "") -> str:
    h = hashlib.sha256()
    if salt:
        h.update(salt.encode("utf-8"))
        h.update(b":")
    h.update(data)
    return h.hexdigest()


class AssetWriter:
    """Stores bytes under a name derived from their salted digest.

    The file is written to ``<name>.tmp`` first and renamed into place, so a
    reader sees either no file or the complete file.
    """

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def path_for(self, filename: str) -> Path:
        return self.directory / filename

    def write(self, data: bytes, salt: str = "", ext: str = DEFAULT_EXTENSION) -> str:
        if ext and not ext.startswith("."):
            ext = "." + ext
        filename = content_digest(data, salt) + (ext or DEFAULT_EXTENSION)
        final_path = self.path_for(filename)
        tmp_path = final_path.with_name(final_path.name + ".tmp")
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "wb") as f:
                f.write(data)
            os.replace(tmp_path, final_path)
        except OSError as e:
            logger.error(f"Failed to write {final_path}: {e}")
            _discard(tmp_path)
            raise WriteError(f"failed to write {filename}: {e}") from e
        logger.debug(f"Stored {len(data)} bytes as {filename}")
        return filename

    def existing(self, filename: Optional[str]) -> Optional[Path]:
        """Path of a previously stored file, or None when it is gone."""
        if not filename or not is_bare_filename(filename) or filename.endswith(".tmp"):
            return None
        path = self.path_for(filename)
        return path if path.is_file() else None


def is_bare_filename(name: str) -> bool:
    return bool(name) and name not in (".", "..") and "/" not in name and "\\" not in name and os.path.basename(name) == name


def _discard(path: Path):
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Could not remove temp file {path}: {e}")
