import argparse
import os
from pathlib import Path
from typing import Optional

from codeimport.config import ConfigError, ImportConfig, load_config
from codeimport.errors import CodeImportError, LockAcquisitionError
from codeimport.lib.codetypes import CodeType, supported_patterns
from codeimport.lib.database import get_engine, get_sessionmaker, init_db, store_instance_id
from codeimport.lib.lock_coordinator import LockCoordinator
from codeimport.lib.named_lock import named_lock_for
from codeimport.lib.staging import Stager, StagingError
from codeimport.log import setup_logging
from codeimport.services.importer import ImportOrchestrator, ImportResult, ImportStatus
from codeimport.services.ledger import TrackingLedger
from codeimport.services.loaders import LoaderRegistry


def _resolve_config(args) -> ImportConfig:
    raw = load_config(getattr(args, "config", None))
    return ImportConfig.from_sources(raw, args)


def build_orchestrator(cfg: ImportConfig, loaders: Optional[LoaderRegistry] = None) -> ImportOrchestrator:
    """Wire ledger, lock and loaders against the configured store."""
    engine = get_engine(cfg.database)
    init_db(engine)
    Session = get_sessionmaker(engine)
    ledger = TrackingLedger(Session())
    coordinator = LockCoordinator(
        named_lock_for(engine, Session()),
        instance=cfg.lock_namespace or store_instance_id(engine),
        policy=cfg.retry,
    )
    return ImportOrchestrator(
        ledger=ledger,
        coordinator=coordinator,
        loaders=loaders if loaders is not None else LoaderRegistry.from_entry_points(),
        stager=Stager(cfg.temp_dir),
    )


def _print_plan(result: ImportResult, path: str, args) -> None:
    artifact = result.artifact
    print("Standardized Codes Import")
    print("Auto-Detected Configuration")
    print(f"  Code Type:     {artifact.load_type.value}")
    print(f"  Version:       {artifact.version or 'Unknown'}")
    print(f"  Revision Date: {artifact.revision_date or 'Unknown'}")
    print(f"  Checksum:      {artifact.checksum}")
    print(f"  File Path:     {path}")
    print(f"  Dry Run:       {'Yes' if getattr(args, 'dry_run', False) else 'No'}")
    print(f"  Cleanup:       {'Yes' if getattr(args, 'cleanup', False) else 'No'}")
    if artifact.rf2:
        print("NOTE: Detected RF2 format - using SNOMED RF2 import")
    if artifact.us_extension:
        print("NOTE: Detected US Extension")
    if not artifact.supported:
        print("WARNING: File metadata could not be fully detected - tracking may be incomplete")


def import_file(args, orchestrator: Optional[ImportOrchestrator] = None) -> int:
    path = os.path.realpath(os.path.abspath(args.file_path))
    if not Path(path).is_file():
        print(f"ERROR: File not found: {path}")
        return 1

    try:
        if orchestrator is None:
            cfg = _resolve_config(args)
            setup_logging(cfg.log_level, cfg.log_json)
            orchestrator = build_orchestrator(cfg)
        result = orchestrator.run(
            path,
            code_type=getattr(args, "code_type", None),
            force=bool(getattr(args, "force", False)),
            dry_run=bool(getattr(args, "dry_run", False)),
            windows=bool(getattr(args, "windows", False)),
            cleanup=bool(getattr(args, "cleanup", False)),
        )
    except LockAcquisitionError as exc:
        print(f"ERROR: {exc}")
        print(f"  lock={exc.lock_name} attempts={exc.attempts} waited={exc.waited_seconds:.0f}s "
              f"holder={exc.holder or 'unknown'} reason={exc.kind.value}")
        return 1
    except CodeImportError as exc:
        print(f"ERROR: {exc}")
        known = exc.details.get("supported_patterns")
        if known:
            print("Supported filename patterns:")
            for name, pats in known.items():
                print(f"  {name}: {', '.join(pats[:2])}{'...' if len(pats) > 2 else ''}")
        return 1
    except (ConfigError, StagingError) as exc:
        print(f"ERROR: {exc}")
        return 1
    except Exception as exc:
        # loader failures surface here after the lock has been released
        print(f"ERROR: Import failed: {exc}")
        return 1

    _report(result, path, args)
    return 0


def _report(result: ImportResult, path: str, args) -> None:
    _print_plan(result, path, args)
    artifact = result.artifact
    if result.status is ImportStatus.ALREADY_LOADED:
        print(f"{artifact.tracking_name} {artifact.version} ({artifact.revision_date}) is already loaded; "
              "nothing to do (use --force to re-import)")
    elif result.status is ImportStatus.SATISFIED_AFTER_WAIT:
        print(f"Another import of {artifact.tracking_name} finished while waiting for lock "
              f"{result.lock_name} ({result.attempts} attempts); skipping")
    elif result.status is ImportStatus.DRY_RUN:
        print("DRY RUN MODE - No database changes were made")
        print(f"  Lock:        {result.lock_name}")
        print(f"  Lock holder: {result.lock_holder or 'none'}")
    else:
        if result.tracking_updated:
            print(f"Tracking table updated: {artifact.tracking_name} v{artifact.version} ({artifact.revision_date})")
        print("Import completed successfully!")
    for w in result.warnings:
        print(f"WARNING: {w}")


def patterns(args) -> int:
    for code_type, pats in supported_patterns().items():
        print(f"{code_type.value}: {', '.join(pats)}")
    return 0


def _ledger_for(args) -> TrackingLedger:
    session = getattr(args, "session", None)
    if session is None:
        cfg = _resolve_config(args)
        engine = get_engine(cfg.database)
        init_db(engine)
        session = get_sessionmaker(engine)()
    return TrackingLedger(session)


def history(args) -> int:
    try:
        code_type = CodeType.parse(args.code_type) if getattr(args, "code_type", None) else None
        records = _ledger_for(args).history(code_type)
    except (CodeImportError, ConfigError) as exc:
        print(f"ERROR: {exc}")
        return 1
    if not records:
        print("No imports recorded")
        return 0
    for r in records:
        print(f"{r.imported_date}  {r.name}  {r.revision_version}  {r.revision_date}  {r.file_checksum}")
    return 0


def lock_status(args) -> int:
    try:
        code_type = CodeType.parse(args.code_type)
        coordinator = getattr(args, "coordinator", None)
        if coordinator is None:
            cfg = _resolve_config(args)
            engine = get_engine(cfg.database)
            init_db(engine)
            coordinator = LockCoordinator(named_lock_for(engine), instance=cfg.lock_namespace or store_instance_id(engine))
        holder = coordinator.peek(code_type)
    except (CodeImportError, ConfigError) as exc:
        print(f"ERROR: {exc}")
        return 1
    name = coordinator.lock_name(code_type)
    print(f"{name}: {'held by ' + holder if holder else 'free'}")
    return 0


def _add_store_options(p: argparse.ArgumentParser) -> None:
    p.add_argument("--config", help="Path to JSON config file (default: ./config.json)")
    p.add_argument("--database", help="Override config: database URL, DSN or SQLite path")
    p.add_argument("--lock-namespace", help="Override config: store instance name used in lock names")


def main(argv=None):
    parser = argparse.ArgumentParser(prog="codeimport")
    sub = parser.add_subparsers(dest="cmd")

    p_imp = sub.add_parser("import", help="Import a standardized code table archive")
    p_imp.add_argument("file_path", help="Path to the code file archive (zip file)")
    p_imp.add_argument("--code-type", help="Override auto-detected code type (" + "|".join(t.value for t in CodeType) + ")")
    _add_store_options(p_imp)
    p_imp.add_argument("--force", action="store_true", help="Import even if this exact release is already loaded")
    p_imp.add_argument("--dry-run", action="store_true", help="Detect and check only; no lock, loader or database changes")
    p_imp.add_argument("--cleanup", action="store_true", help="Remove staged files after a successful import")
    p_imp.add_argument("--temp-dir", help="Override config: staging directory")
    p_imp.add_argument("-w", "--windows", action="store_true", help="Use Windows-specific processing (RXNORM only)")
    p_imp.add_argument("--lock-retries", type=int, help="Override config: attempts to acquire the import lock")
    p_imp.add_argument("--lock-retry-delay", type=float, help="Override config: initial backoff in seconds (0 = fail immediately)")
    p_imp.add_argument("--lock-timeout", type=int, help="Override config: seconds each lock attempt waits")
    p_imp.set_defaults(func=import_file)

    p_pat = sub.add_parser("patterns", help="List supported filename patterns")
    p_pat.set_defaults(func=patterns)

    p_hist = sub.add_parser("history", help="List recorded imports, newest first")
    p_hist.add_argument("--code-type")
    _add_store_options(p_hist)
    p_hist.set_defaults(func=history)

    p_lock = sub.add_parser("lock-status", help="Show who holds the import lock for a code type")
    p_lock.add_argument("code_type")
    _add_store_options(p_lock)
    p_lock.set_defaults(func=lock_status)

    args = parser.parse_args(argv)
    if hasattr(args, "func"):
        return args.func(args)
    parser.print_help()
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
