"""Import orchestration.

    detect -> exact-match pre-check -> acquire category lock
           -> (waited?) any-loaded re-check -> stage -> loader -> ledger update
           -> release lock

The lock is released on every path out of the critical section, and lease
based locks are renewed in the background while the loader runs. Loader
exceptions reach the caller unchanged once the lock is gone; ledger update
and release failures are logged and never replace the primary outcome.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

import structlog

from codeimport.errors import ClassificationError, LedgerUpdateError, StoreConnectivityError
from codeimport.lib.codetypes import CodeType, supported_patterns
from codeimport.lib.detector import Artifact, MetadataDetector
from codeimport.lib.lock_coordinator import LockCoordinator
from codeimport.lib.staging import Stager
from codeimport.services.idempotency import IdempotencyGuard
from codeimport.services.ledger import TrackingLedger
from codeimport.services.loaders import LoaderRegistry, LoadRequest

log = structlog.get_logger()


class ImportStatus(str, enum.Enum):
    IMPORTED = "imported"
    ALREADY_LOADED = "already_loaded"
    SATISFIED_AFTER_WAIT = "satisfied_after_wait"
    DRY_RUN = "dry_run"


@dataclass
class ImportResult:
    status: ImportStatus
    artifact: Artifact
    lock_name: Optional[str] = None
    attempts: int = 0
    waited_seconds: float = 0.0
    tracking_updated: bool = False
    lock_holder: Optional[str] = None
    warnings: list[str] = field(default_factory=list)


class ImportOrchestrator:
    def __init__(
        self,
        ledger: TrackingLedger,
        coordinator: LockCoordinator,
        loaders: LoaderRegistry,
        detector: Optional[MetadataDetector] = None,
        stager: Optional[Stager] = None,
    ):
        self.ledger = ledger
        self.coordinator = coordinator
        self.loaders = loaders
        self.detector = detector or MetadataDetector(ledger)
        self.guard = IdempotencyGuard(ledger)
        self.stager = stager

    def classify(self, path: str, code_type=None) -> Artifact:
        """Detect the artifact or raise ``ClassificationError`` before any lock work."""
        if code_type is not None and not isinstance(code_type, CodeType):
            code_type = CodeType.parse(code_type)
        artifact = self.detector.detect(path, code_type)
        if artifact is None:
            patterns = {t.value: p for t, p in supported_patterns().items()}
            raise ClassificationError(
                f"Could not auto-detect code type from filename: {path}",
                {"path": str(path), "supported_patterns": patterns},
            )
        return artifact

    def run(
        self,
        path: str,
        code_type=None,
        force: bool = False,
        dry_run: bool = False,
        windows: bool = False,
        cleanup: bool = False,
    ) -> ImportResult:
        artifact = self.classify(path, code_type)
        bound = log.bind(code_type=artifact.code_type.value, version=artifact.version,
                         revision_date=str(artifact.revision_date), checksum=artifact.checksum)

        if not force and self.guard.is_exactly_loaded(
            artifact.tracking_name, artifact.revision_date, artifact.version, artifact.checksum
        ):
            bound.info("import_skipped", reason="already_loaded")
            return ImportResult(ImportStatus.ALREADY_LOADED, artifact)

        # fail on a missing loader before anyone waits on the lock for nothing
        self.loaders.get(artifact.load_type)
        lock_name = self.coordinator.lock_name(artifact.code_type)

        if dry_run:
            result = ImportResult(ImportStatus.DRY_RUN, artifact, lock_name=lock_name)
            try:
                result.lock_holder = self.coordinator.peek(artifact.code_type)
            except StoreConnectivityError as exc:
                result.warnings.append(f"Could not check lock holder: {exc}")
            bound.info("import_dry_run", lock_name=lock_name, lock_holder=result.lock_holder)
            return result

        handle = self.coordinator.acquire(artifact.code_type)
        try:
            result = ImportResult(
                ImportStatus.IMPORTED,
                artifact,
                lock_name=handle.lock_name,
                attempts=handle.attempts,
                waited_seconds=handle.waited_seconds,
            )
            if handle.waited and self.guard.is_any_loaded(artifact.tracking_name):
                bound.info("import_skipped", reason="loaded_while_waiting", attempts=handle.attempts)
                result.status = ImportStatus.SATISFIED_AFTER_WAIT
                return result

            with self.coordinator.keepalive():
                self._load(artifact, windows=windows, cleanup=cleanup)
                self._update_tracking(artifact, result)
            bound.info("import_completed", lock_name=handle.lock_name, tracking_updated=result.tracking_updated)
            return result
        finally:
            self.coordinator.release()

    def _load(self, artifact: Artifact, windows: bool, cleanup: bool) -> None:
        load_type = artifact.load_type
        instance = self.coordinator.instance
        staging_dir = self.stager.stage(artifact.path, load_type, instance) if self.stager else None
        request = LoadRequest(
            code_type=load_type,
            rf2=artifact.rf2,
            us_extension=artifact.us_extension,
            windows=windows and load_type is CodeType.RXNORM,
            staging_dir=staging_dir,
            artifact=artifact,
        )
        try:
            self.loaders.run(request)
        except Exception:
            if self.stager:
                self.stager.cleanup(load_type, instance)
            raise
        if cleanup and self.stager:
            self.stager.cleanup(load_type, instance)

    def _update_tracking(self, artifact: Artifact, result: ImportResult) -> None:
        if not artifact.metadata_complete:
            msg = "Metadata incomplete - tracking table not updated (missing: %s)" % ", ".join(
                artifact.missing_metadata()
            )
            log.warning("tracking_skipped", code_type=artifact.code_type.value,
                        missing=artifact.missing_metadata())
            result.warnings.append(msg)
            return
        try:
            self.ledger.insert(
                artifact.tracking_name,
                artifact.revision_date,
                artifact.version,
                artifact.checksum,
                loaded_at=datetime.now(timezone.utc),
            )
        except StoreConnectivityError as exc:
            err = LedgerUpdateError(f"Failed to update tracking table: {exc}", exc.details)
            log.warning("tracking_update_failed", code_type=artifact.tracking_name, error=str(err))
            result.warnings.append(str(err))
            return
        result.tracking_updated = True
