"""Canonical attachment paths and public URLs.

Layout (pinned):
    maintenance/{owner_id}/{vehicle_id}/{maintenance_id}/{random_name}.{ext}
    maintenance/{owner_id}/{vehicle_id}/{random_name}.{ext}   (staged before the record exists)

Public URL: {base_url}/storage/v1/object/public/{path}

Pure functions only: no storage, no DB.
"""

from __future__ import annotations

import mimetypes
import re
import uuid
from dataclasses import dataclass
from urllib.parse import unquote

ROOT_SEGMENT = "maintenance"
PUBLIC_URL_MARKER = "/storage/v1/object/public/"

_SEGMENT_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")
_NAME_RE = re.compile(r"^[A-Za-z0-9_-]{1,128}\.[A-Za-z0-9]{1,16}$")
_EXT_RE = re.compile(r"^[A-Za-z0-9]{1,16}$")
_DEFAULT_EXT = "bin"


@dataclass(frozen=True)
class StoragePath:
    owner_id: str
    vehicle_id: str
    maintenance_id: str | None
    name: str

    def encode(self) -> str:
        segments = [ROOT_SEGMENT, self.owner_id, self.vehicle_id]
        if self.maintenance_id:
            segments.append(self.maintenance_id)
        segments.append(self.name)
        return "/".join(segments)

    def owned_by(self, owner_id: int | str) -> bool:
        return self.owner_id == str(owner_id)


def _valid_segment(value: str) -> bool:
    return bool(_SEGMENT_RE.match(value))


def build_object_path(
    *,
    owner_id: int | str,
    vehicle_id: str,
    maintenance_id: str | None,
    name: str,
) -> str:
    owner = str(owner_id)
    for label, value in (("owner_id", owner), ("vehicle_id", vehicle_id)):
        if not _valid_segment(value):
            raise ValueError(f"invalid {label} path segment: {value!r}")
    if maintenance_id is not None and not _valid_segment(maintenance_id):
        raise ValueError(f"invalid maintenance_id path segment: {maintenance_id!r}")
    if not _NAME_RE.match(name):
        raise ValueError(f"invalid object name: {name!r}")
    return StoragePath(
        owner_id=owner, vehicle_id=vehicle_id, maintenance_id=maintenance_id, name=name
    ).encode()


def parse_object_path(path: str) -> StoragePath | None:
    parts = (path or "").split("/")
    if len(parts) not in (4, 5) or parts[0] != ROOT_SEGMENT:
        return None
    *dirs, name = parts[1:]
    if not all(_valid_segment(p) for p in dirs) or not _NAME_RE.match(name):
        return None
    return StoragePath(
        owner_id=dirs[0],
        vehicle_id=dirs[1],
        maintenance_id=dirs[2] if len(dirs) == 3 else None,
        name=name,
    )


def public_url_for(base_url: str, path: str) -> str:
    return f"{base_url.rstrip('/')}{PUBLIC_URL_MARKER}{path}"


def path_from_url(url: str) -> str | None:
    """Derive the canonical storage path from a public URL.

    Returns None for URLs that do not follow the convention (legacy or foreign URLs).
    """
    if not url:
        return None
    _, marker, rest = url.partition(PUBLIC_URL_MARKER)
    if not marker:
        return None
    rest = unquote(rest.split("#", 1)[0].split("?", 1)[0])
    parsed = parse_object_path(rest)
    return parsed.encode() if parsed is not None else None


def file_extension(*, filename: str | None, mime_type: str | None) -> str:
    if filename and "." in filename:
        ext = filename.rsplit(".", 1)[1].lower()
        if _EXT_RE.match(ext):
            return ext
    if mime_type:
        guessed = mimetypes.guess_extension(mime_type.split(";", 1)[0].strip())
        if guessed:
            return guessed.lstrip(".").lower()
    return _DEFAULT_EXT


def random_object_name(*, filename: str | None, mime_type: str | None) -> str:
    return f"{uuid.uuid4().hex}.{file_extension(filename=filename, mime_type=mime_type)}"


def owned_path_from_url(url: str, owner_id: int | str) -> str | None:
    """Like ``path_from_url`` but also None when the path belongs to another owner."""
    path = path_from_url(url)
    if path is None:
        return None
    parsed = parse_object_path(path)
    return path if parsed is not None and parsed.owned_by(owner_id) else None
