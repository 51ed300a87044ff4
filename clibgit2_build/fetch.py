"""Downloads source archives and unpacks one tree per platform."""

from __future__ import annotations

import os
import shutil
import tarfile
import zipfile
from pathlib import Path
from typing import Optional

import httpx

from .exceptions import FetchError
from .models import DependencyConfig, TaskOutput


class SourceFetcher:
    """Fetches fixed-version archives into the dependencies directory.

    An archive that is already present is reused as is, downloads land in a
    temporary file first so an interrupted transfer never looks complete.
    """

    def __init__(self, timeout: float = 300.0, client: Optional[httpx.Client] = None):
        self._timeout = timeout
        self._client = client

    def download(self, dep: DependencyConfig, destination: Path, output: TaskOutput) -> Path:
        """Download the archive of ``dep`` to ``destination`` unless cached."""
        destination = Path(destination)
        if destination.exists():
            output.write(f"Using cached {destination.name}")
            return destination

        destination.parent.mkdir(parents=True, exist_ok=True)
        partial = destination.with_name(destination.name + ".part")
        output.write(f"Downloading {dep.url}")
        try:
            if self._client is not None:
                self._stream(self._client, dep.url, partial)
            else:
                with httpx.Client(timeout=self._timeout, follow_redirects=True) as client:
                    self._stream(client, dep.url, partial)
        except httpx.HTTPStatusError as exc:
            partial.unlink(missing_ok=True)
            raise FetchError(dep.url, f"HTTP {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            partial.unlink(missing_ok=True)
            raise FetchError(dep.url, str(exc) or exc.__class__.__name__) from exc

        os.replace(partial, destination)
        output.write(f"Saved {destination} ({destination.stat().st_size} bytes)")
        return destination

    @staticmethod
    def _stream(client: httpx.Client, url: str, target: Path) -> None:
        with client.stream("GET", url) as response:
            response.raise_for_status()
            with open(target, "wb") as f:
                for chunk in response.iter_bytes():
                    f.write(chunk)

    def extract(self, dep: DependencyConfig, archive: Path, target: Path, output: TaskOutput) -> Path:
        """Unpack ``archive`` so that its top level directory becomes ``target``.

        Any previous tree at ``target`` is removed first.
        """
        archive = Path(archive)
        target = Path(target)
        if not archive.exists():
            raise FetchError(dep.url, f"archive {archive} is missing")

        staging = target.with_name(target.name + ".extracting")
        for path in (staging, target):
            if path.exists():
                shutil.rmtree(path)
        staging.mkdir(parents=True)

        output.write(f"Extracting {archive.name} to {target.name}")
        try:
            if zipfile.is_zipfile(archive):
                _extract_zip(archive, staging)
            else:
                with tarfile.open(archive) as tar:
                    tar.extractall(staging, filter="tar")
        except (tarfile.TarError, zipfile.BadZipFile, OSError) as exc:
            shutil.rmtree(staging, ignore_errors=True)
            raise FetchError(dep.url, f"cannot extract {archive.name}: {exc}") from exc

        unpacked = staging / dep.source_dir
        if not unpacked.is_dir():
            shutil.rmtree(staging, ignore_errors=True)
            raise FetchError(dep.url, f"{archive.name} does not contain {dep.source_dir}/")

        unpacked.rename(target)
        shutil.rmtree(staging)
        return target


def _extract_zip(archive: Path, destination: Path) -> None:
    """Extract a zip file, keeping the unix permission bits zipfile drops"""
    with zipfile.ZipFile(archive) as zf:
        for info in zf.infolist():
            extracted = Path(zf.extract(info, destination))
            mode = (info.external_attr >> 16) & 0o777
            if mode and not info.is_dir():
                extracted.chmod(mode)


__all__ = ["SourceFetcher"]
