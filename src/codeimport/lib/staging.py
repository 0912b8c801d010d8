"""Temporary staging of release archives for loaders."""
from __future__ import annotations

import os
import re
import shutil
import tempfile
import zipfile
from pathlib import Path
from typing import Optional

import structlog

from codeimport.lib.codetypes import CodeType

log = structlog.get_logger()


class StagingError(OSError):
    pass


def _safe_segment(value: str) -> str:
    return re.sub(r"[^A-Za-z0-9_.-]", "_", value).strip(".") or "default"


class Stager:
    """Copies an archive into ``<temp>/<instance>/<type>/`` and extracts it there.

    The store instance is part of the path because imports of one code type
    into different databases hold different locks and may run side by side.
    """

    def __init__(self, temp_dir: Optional[str] = None):
        if temp_dir is not None:
            p = Path(temp_dir)
            if not p.is_dir() or not os.access(p, os.W_OK):
                raise StagingError(f"Temporary directory is not writable: {temp_dir}")
        self.temp_dir = temp_dir

    def root(self) -> Path:
        return Path(self.temp_dir or tempfile.gettempdir())

    def staging_dir(self, code_type: CodeType, instance: str = "default") -> Path:
        return self.root() / _safe_segment(instance) / code_type.family.value.lower()

    def stage(self, path: str, code_type: CodeType, instance: str = "default") -> Path:
        target = self.staging_dir(code_type, instance)
        if target.exists():
            shutil.rmtree(target)
        target.mkdir(parents=True)
        try:
            self._fill(path, target)
        except StagingError:
            shutil.rmtree(target, ignore_errors=True)
            raise
        log.info("artifact_staged", path=str(path), staging_dir=str(target))
        return target

    def _fill(self, path: str, target: Path) -> None:
        copied = target / Path(path).name
        try:
            shutil.copy2(path, copied)
        except OSError as exc:
            raise StagingError(f"Failed to copy file to temporary directory: {exc}") from exc

        if zipfile.is_zipfile(copied):
            try:
                with zipfile.ZipFile(copied) as zf:
                    zf.extractall(target)
            except (zipfile.BadZipFile, OSError) as exc:
                raise StagingError(f"Failed to extract archive file: {exc}") from exc

    def cleanup(self, code_type: CodeType, instance: str = "default") -> None:
        target = self.staging_dir(code_type, instance)
        if target.exists():
            shutil.rmtree(target, ignore_errors=True)
            log.info("staging_cleaned", staging_dir=str(target))
