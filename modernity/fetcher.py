"""Download and extraction of crate source archives into scratch directories."""

from __future__ import annotations

import shutil
import tarfile
import tempfile
import threading
from http.client import HTTPException
from pathlib import Path
from typing import Any, Callable, Dict, List
from urllib.error import URLError
from urllib.request import Request, urlopen

from .config import RegistryConfig
from .errors import FetchFailure
from .logging import get_logger
from .models import LibraryVersion, Release

logger = get_logger("fetcher")

_CHUNK_SIZE = 1024 * 64


class SourceFetcher:
    """Fetches one version at a time; safe to share between worker threads."""

    def __init__(
        self,
        config: RegistryConfig | None = None,
        *,
        scratch_root: Path | None = None,
        opener: Callable[..., Any] = urlopen,
    ) -> None:
        self._config = config or RegistryConfig()
        self._scratch_root = scratch_root
        self._opener = opener
        self._lock = threading.Lock()
        self._scratch: Dict[str, Path] = {}

    def fetch(self, name: str, release: Release) -> LibraryVersion:
        """Download and extract ``release``; raises FetchFailure for this version only."""
        if self._scratch_root is not None:
            self._scratch_root.mkdir(parents=True, exist_ok=True)
        scratch = Path(tempfile.mkdtemp(prefix=f"{name}-{release.version}-", dir=self._scratch_root))
        key = _key(name, release.version)
        with self._lock:
            self._scratch[key] = scratch
        try:
            archive = scratch / f"{name}-{release.version}.crate"
            self._download(release, archive)
            source_root = _extract(archive, scratch / "src", release.version)
        except FetchFailure:
            self.release(name, release.version)
            raise
        logger.debug("Extracted %s %s into %s", name, release.version, source_root)
        return LibraryVersion(
            name=name,
            version=release.version,
            published_at=release.published_at,
            source_root=source_root,
        )

    def release(self, name: str, version: str) -> None:
        """Remove the scratch directory of a finished version."""
        with self._lock:
            scratch = self._scratch.pop(_key(name, version), None)
        if scratch is not None:
            shutil.rmtree(scratch, ignore_errors=True)

    def cleanup(self) -> None:
        """Remove every outstanding scratch directory."""
        with self._lock:
            outstanding: List[Path] = list(self._scratch.values())
            self._scratch.clear()
        for scratch in outstanding:
            shutil.rmtree(scratch, ignore_errors=True)
        if outstanding:
            logger.debug("Removed %d scratch directories", len(outstanding))

    @property
    def outstanding(self) -> List[Path]:
        with self._lock:
            return list(self._scratch.values())

    def _download(self, release: Release, destination: Path) -> None:
        request = Request(release.archive_url, headers={"User-Agent": self._config.user_agent})
        try:
            with self._opener(request, timeout=self._config.timeout) as response, destination.open("wb") as handle:
                shutil.copyfileobj(response, handle, _CHUNK_SIZE)
        except (URLError, HTTPException, OSError, ValueError) as exc:
            raise FetchFailure(release.version, f"download of {release.archive_url} failed: {exc}") from exc


def _extract(archive: Path, destination: Path, version: str) -> Path:
    destination.mkdir(parents=True, exist_ok=True)
    extracted = 0
    try:
        with tarfile.open(archive, "r:gz") as tar:
            for member in tar.getmembers():
                if not _is_safe_member(member, destination):
                    logger.warning("Skipping unsafe archive member %s", member.name)
                    continue
                tar.extract(member, path=destination, set_attrs=False, filter="data")
                if member.isfile():
                    extracted += 1
    except (tarfile.TarError, EOFError, OSError) as exc:
        raise FetchFailure(version, f"archive could not be extracted: {exc}") from exc
    if extracted == 0:
        raise FetchFailure(version, "archive contains no files")
    return _source_root(destination)


def _is_safe_member(member: tarfile.TarInfo, destination: Path) -> bool:
    if member.name.startswith(("/", "\\")):
        return False
    if ".." in Path(member.name).parts:
        return False
    if member.issym() or member.islnk():
        return False
    if not (member.isfile() or member.isdir()):
        return False
    resolved = (destination / member.name).resolve()
    return resolved.is_relative_to(destination.resolve())


def _source_root(destination: Path) -> Path:
    entries = list(destination.iterdir())
    if len(entries) == 1 and entries[0].is_dir():
        return entries[0]
    return destination


def _key(name: str, version: str) -> str:
    return f"{name}@{version}"


__all__ = ["SourceFetcher"]
