"""
Validation of uploaded site archives.

A completed order must carry a well-formed ZIP; text sources inside it are
extracted into a tagged {path, content} list for previews and edits.
"""
from __future__ import annotations

import io
import posixpath
import zipfile
import zlib

from pydantic import BaseModel

from orderdesk.core.config import settings
from orderdesk.services.errors import ArtifactFormatError


class GeneratedFile(BaseModel):
    path: str
    content: str

    model_config = {"frozen": True}


def _is_safe_path(name: str) -> bool:
    normalized = posixpath.normpath(name)
    return not (normalized.startswith("/") or normalized.startswith("..") or "\\" in name)


def parse_artifact(content: bytes) -> list[GeneratedFile]:
    """Validate a ZIP archive and return its text files.

    Raises ArtifactFormatError for oversized, unreadable, corrupt or empty archives
    and for member paths escaping the archive root. Binary members (images, fonts)
    are accepted but not extracted; text members that are not UTF-8 are skipped.
    """
    if not content:
        raise ArtifactFormatError("artifact is empty")
    if len(content) > settings.artifact_max_bytes:
        raise ArtifactFormatError(f"artifact exceeds {settings.artifact_max_size_mb}MB")
    try:
        archive = zipfile.ZipFile(io.BytesIO(content))
    except zipfile.BadZipFile as e:
        raise ArtifactFormatError("artifact is not a zip archive") from e

    text_extensions = settings.artifact_text_extensions_set
    files: list[GeneratedFile] = []
    with archive:
        members = [info for info in archive.infolist() if not info.is_dir()]
        if not members:
            raise ArtifactFormatError("archive contains no files")
        try:
            broken = archive.testzip()
        except (zipfile.BadZipFile, zlib.error, OSError, RuntimeError) as e:
            raise ArtifactFormatError(f"archive is corrupt: {e}") from e
        if broken is not None:
            raise ArtifactFormatError(f"archive member is corrupt: {broken}")

        for info in members:
            if not _is_safe_path(info.filename):
                raise ArtifactFormatError(f"unsafe path in archive: {info.filename}")
            ext = posixpath.splitext(info.filename.lower())[1]
            if ext not in text_extensions:
                continue
            try:
                text = archive.read(info).decode("utf-8")
            except UnicodeDecodeError:
                continue
            files.append(GeneratedFile(path=info.filename, content=text))
    return files
