"""Loader capability interface and the per-code-type lookup table.

Loaders do the actual parsing and row writing for one code table. They are
supplied by the host application, either registered directly or published
under the ``codeimport.loaders`` entry point group with the code type name
as the entry point name (e.g. ``RXNORM = mypkg.loaders:RxNormLoader``).
"""
from __future__ import annotations

from dataclasses import dataclass
from importlib.metadata import entry_points
from pathlib import Path
from typing import TYPE_CHECKING, Optional, Protocol

import structlog

from codeimport.errors import ClassificationError, LoaderError
from codeimport.lib.codetypes import CodeType

if TYPE_CHECKING:
    from codeimport.lib.detector import Artifact

log = structlog.get_logger()

ENTRY_POINT_GROUP = "codeimport.loaders"


@dataclass(frozen=True)
class LoadRequest:
    code_type: CodeType
    rf2: bool = False
    us_extension: bool = False
    windows: bool = False
    staging_dir: Optional[Path] = None
    artifact: Optional["Artifact"] = None


class CodeLoader(Protocol):
    def load(self, request: LoadRequest) -> Optional[bool]:
        """Load the staged release. Return False or raise to report failure."""


class LoaderRegistry:
    def __init__(self, loaders: Optional[dict[CodeType, CodeLoader]] = None):
        self._loaders: dict[CodeType, CodeLoader] = dict(loaders or {})

    def register(self, code_type: CodeType, loader: CodeLoader) -> None:
        self._loaders[code_type] = loader

    def supports(self, code_type: CodeType) -> bool:
        return code_type in self._loaders

    def get(self, code_type: CodeType) -> CodeLoader:
        try:
            return self._loaders[code_type]
        except KeyError:
            raise LoaderError(
                f"No loader registered for code type {code_type.value}",
                {"code_type": code_type.value},
            ) from None

    def run(self, request: LoadRequest) -> None:
        """Invoke the loader for ``request.code_type`` exactly once.

        Exceptions raised by the loader propagate unchanged.
        """
        result = self.get(request.code_type).load(request)
        if result is False:
            raise LoaderError(f"{request.code_type.value} import failed", {"code_type": request.code_type.value})

    @classmethod
    def from_entry_points(cls, group: str = ENTRY_POINT_GROUP) -> LoaderRegistry:
        registry = cls()
        for ep in entry_points(group=group):
            try:
                code_type = CodeType.parse(ep.name)
            except ClassificationError:
                log.warning("loader_entry_point_ignored", name=ep.name, reason="unknown code type")
                continue
            target = ep.load()
            # classes are instantiated, ready-made loader objects used as-is
            registry.register(code_type, target() if isinstance(target, type) else target)
        return registry
