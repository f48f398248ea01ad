"""Extraction of single files from downloaded release archives."""

from __future__ import annotations

import enum
import logging
import os
import shutil
import tarfile
import zipfile
import zlib
from pathlib import Path, PurePosixPath
from typing import BinaryIO

log = logging.getLogger(__name__)

_EXECUTABLE_MODE = 0o755


class ArchiveKind(enum.Enum):
    """How a downloaded file is packed."""

    TAR_GZ = "tar.gz"
    ZIP = "zip"
    NONE = "none"


class ArchiveError(Exception):
    """A file could not be read from or written out of an archive."""


def _components(raw: str) -> tuple[str, ...]:
    parts = PurePosixPath(raw).parts
    if raw.startswith("./"):
        # A leading "." is a component of its own and counts as the first one.
        parts = (".",) + parts
    return parts


def _without_first(raw: str) -> PurePosixPath:
    """Drop the first path component, usually the folder the archive was made from."""
    return PurePosixPath(*_components(raw)[1:])


def _is_enclosed(raw: str) -> bool:
    path = PurePosixPath(raw.replace("\\", "/"))
    return not path.is_absolute() and ".." not in path.parts


def _write_out(source: BinaryIO, name: str, target_directory: Path) -> Path:
    out = target_directory / name
    out.parent.mkdir(parents=True, exist_ok=True)
    with open(out, "wb") as sink:
        shutil.copyfileobj(source, sink)
    return out


def _set_permissions(path: Path, mode: int) -> None:
    """Apply a Unix mode to an extracted file; does nothing elsewhere."""
    if os.name != "posix":
        return
    log.debug("Setting permission of '%s' to %#o", path, mode)
    try:
        os.chmod(path, mode & 0o7777)
    except OSError as err:
        raise ArchiveError(f"failed setting file permissions: {err}") from err


class Archive:
    """A downloaded file from which single entries can be extracted.

    Each extraction reads the archive from the start, so several files can be
    taken from the same archive one after another.
    """

    def __init__(self, path: str | os.PathLike[str], kind: ArchiveKind) -> None:
        self.path = Path(path)
        self.kind = kind
        if kind is ArchiveKind.ZIP:
            try:
                with zipfile.ZipFile(self.path):
                    pass
            except (zipfile.BadZipFile, OSError) as err:
                raise ArchiveError(
                    f"failed opening zip archive {self.path}: {err}"
                ) from err

    def extract_file(
        self, name: str, target_directory: str | os.PathLike[str]
    ) -> Path:
        """Extract ``name`` into ``target_directory`` and return the written path."""
        target = Path(target_directory)
        match self.kind:
            case ArchiveKind.TAR_GZ:
                return self._extract_tar(name, target)
            case ArchiveKind.ZIP:
                return self._extract_zip(name, target)
            case ArchiveKind.NONE:
                return self._copy_plain(name, target)
        raise ArchiveError(f"unknown archive kind: {self.kind!r}")

    def _extract_tar(self, name: str, target: Path) -> Path:
        wanted = PurePosixPath(name)
        try:
            with tarfile.open(self.path, "r:gz") as tar:
                for member in tar:
                    if _without_first(member.name) != wanted:
                        continue
                    source = tar.extractfile(member)
                    if source is None:
                        raise ArchiveError(f"'{name}' is not a regular file in archive")
                    with source:
                        out = _write_out(source, name, target)
                    _set_permissions(out, member.mode)
                    return out
        except (tarfile.TarError, OSError, EOFError, zlib.error) as err:
            raise ArchiveError(f"failed reading tar archive {self.path}: {err}") from err
        raise ArchiveError(f"file not found in archive: {name}")

    def _extract_zip(self, name: str, target: Path) -> Path:
        wanted = PurePosixPath(name)
        try:
            with zipfile.ZipFile(self.path) as archive:
                for info in archive.infolist():
                    if not _is_enclosed(info.filename):
                        raise ArchiveError(f"invalid entry path: {info.filename}")
                    if _without_first(info.filename) != wanted:
                        continue
                    with archive.open(info) as source:
                        out = _write_out(source, name, target)
                    mode = info.external_attr >> 16
                    if mode:
                        _set_permissions(out, mode)
                    return out
        except (zipfile.BadZipFile, OSError, zlib.error) as err:
            raise ArchiveError(f"failed reading zip archive {self.path}: {err}") from err
        raise ArchiveError(f"file not found in archive: {name}")

    def _copy_plain(self, name: str, target: Path) -> Path:
        out = target / name
        try:
            out.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(self.path, out)
        except OSError as err:
            raise ArchiveError(f"failed to copy binary: {err}") from err
        _set_permissions(out, _EXECUTABLE_MODE)
        return out