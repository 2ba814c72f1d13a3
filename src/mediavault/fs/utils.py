"""Path utilities, reserved subtrees, collision naming, media kinds."""

from __future__ import annotations

import asyncio
import posixpath
import uuid
from datetime import UTC, datetime
from pathlib import PurePosixPath
from typing import TYPE_CHECKING, Any, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable

T = TypeVar("T")

# =============================================================================
# Virtual namespace layout
# =============================================================================

ASSETS_PREFIX = "/assets"
DEVICE_PREFIX = "/device"
USERS_PREFIX = "/assets/users"

TRASH_DIR = "_trash"
UPLOADS_DIR = "Uploads"
DEVICE_BACKUP_DIR = "DeviceBackup"

TRASH_BUCKET_FORMAT = "%Y-%m-%d"
TRASH_STAMP_FORMAT = "%Y%m%d_%H%M%S"

# =============================================================================
# Media Extensions
# =============================================================================

IMAGE_EXTENSIONS = {
    ".jpg", ".jpeg", ".png", ".bmp", ".tiff", ".tif", ".gif", ".webp", ".heic", ".heif",
}

VIDEO_EXTENSIONS = {
    ".mp4", ".avi", ".mov", ".mkv", ".wmv", ".flv", ".webm", ".m4v", ".3gp", ".mpeg", ".mpg",
}

MEDIA_EXTENSIONS = IMAGE_EXTENSIONS | VIDEO_EXTENSIONS


def is_media_file(filename: str) -> bool:
    """Check if a file name carries a supported image or video extension."""
    return PurePosixPath(filename).suffix.lower() in MEDIA_EXTENSIONS


def media_type_for(filename: str) -> str:
    """Return ``"image"`` or ``"video"`` based on the extension."""
    ext = PurePosixPath(filename).suffix.lower()
    return "image" if ext in IMAGE_EXTENSIONS else "video"


# =============================================================================
# Path Utilities
# =============================================================================


def normalize_path(path: str) -> str:
    """Normalize a virtual path.

    - Converts backslashes to forward slashes
    - Ensures leading /
    - Resolves .. and . references
    - Removes double slashes
    - Removes trailing slash (except for root)

    Examples:
        normalize_path("assets/a.jpg") -> "/assets/a.jpg"
        normalize_path("/assets//users/1/") -> "/assets/users/1"
        normalize_path("") -> "/"
    """
    if not path:
        return "/"

    path = path.strip().replace("\\", "/")

    if not path.startswith("/"):
        path = "/" + path

    path = posixpath.normpath(path)

    # posixpath keeps a leading "//" intact
    if path.startswith("//"):
        path = "/" + path.lstrip("/")

    if path != "/" and path.endswith("/"):
        path = path[:-1]

    return path


def split_path(path: str) -> tuple[str, str]:
    """Split path into (parent_dir, filename).

    Examples:
        split_path("/assets/a.jpg") -> ("/assets", "a.jpg")
        split_path("/a.jpg") -> ("/", "a.jpg")
        split_path("/") -> ("/", "")
    """
    path = normalize_path(path)
    if path == "/":
        return "/", ""
    return posixpath.split(path)


def has_traversal(path: str) -> bool:
    """True when *path* contains a ``..`` segment before normalization."""
    return ".." in path.replace("\\", "/").split("/")


def validate_path(path: str) -> tuple[bool, str]:
    """Validate a path for security and compatibility issues.

    Returns:
        (is_valid, error_message) - error_message is empty if valid
    """
    if not path or not path.strip():
        return False, "Path is empty"

    if "\x00" in path:
        return False, "Path contains null bytes"

    for ch in path:
        code = ord(ch)
        if 0x01 <= code <= 0x1F:
            return False, f"Path contains control character: 0x{code:02x}"

    if len(path) > 4096:
        return False, "Path too long (max 4096 characters)"

    if has_traversal(path):
        return False, "Path contains a parent directory reference"

    _, name = split_path(path)
    if name and len(name) > 255:
        return False, "Filename too long (max 255 characters)"

    return True, ""


def is_under(path: str, prefix: str) -> bool:
    """Case-insensitive containment test on a path-segment boundary."""
    path = normalize_path(path).lower()
    prefix = normalize_path(prefix).lower()
    if prefix == "/":
        return True
    return path == prefix or path.startswith(prefix + "/")


def user_root_path(user_id: str) -> str:
    """Virtual root of a user's personal space."""
    return f"{USERS_PREFIX}/{user_id}"


def owner_from_path(path: str) -> str | None:
    """Return the user id whose personal space contains *path*, if any."""
    path = normalize_path(path)
    if not is_under(path, USERS_PREFIX):
        return None
    parts = path[len(USERS_PREFIX) :].strip("/").split("/")
    return parts[0] or None


def trash_root_path(user_id: str) -> str:
    return f"{user_root_path(user_id)}/{TRASH_DIR}"


def trash_bucket_path(user_id: str, now: datetime) -> str:
    """Per-day trash bucket, e.g. ``/assets/users/42/_trash/2024-06-01``."""
    return f"{trash_root_path(user_id)}/{now.strftime(TRASH_BUCKET_FORMAT)}"


def is_trash_path(path: str) -> bool:
    """Check if a virtual path lies in any user's trash subtree."""
    owner = owner_from_path(path)
    return owner is not None and is_under(path, trash_root_path(owner))


def uploads_path(user_id: str) -> str:
    return f"{user_root_path(user_id)}/{UPLOADS_DIR}"


def device_backup_path(user_id: str) -> str:
    return f"{user_root_path(user_id)}/{DEVICE_BACKUP_DIR}"


# =============================================================================
# Collision naming
# =============================================================================


def unique_token() -> str:
    """Unpredictable token used to de-collide file names."""
    return uuid.uuid4().hex


def trash_file_name(name: str, now: datetime, *, collided: bool = False) -> str:
    """Timestamped trash name, with a unique token when the plain one is taken."""
    stamp = now.strftime(TRASH_STAMP_FORMAT)
    if collided:
        return f"{stamp}_{unique_token()}_{name}"
    return f"{stamp}_{name}"


def suffixed_name(name: str) -> str:
    """``IMG_001.jpg`` -> ``IMG_001_<token>.jpg``."""
    p = PurePosixPath(name)
    return f"{p.stem}_{unique_token()}{p.suffix}"


def prefixed_name(name: str) -> str:
    """``IMG_001.jpg`` -> ``<token>_IMG_001.jpg``."""
    return f"{unique_token()}_{name}"


# =============================================================================
# Uninterruptible physical work
# =============================================================================


async def run_to_completion(func: Callable[..., T], *args: Any) -> T:
    """Run blocking *func* in a thread and let it finish even if cancelled.

    Cancellation of the caller is re-raised only after the physical
    mutation has completed, so no partial move or copy is left behind.
    """
    task = asyncio.ensure_future(asyncio.to_thread(func, *args))
    try:
        return await asyncio.shield(task)
    except asyncio.CancelledError:
        await task
        raise


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops the offset)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value
