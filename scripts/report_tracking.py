#!/usr/bin/env python
"""Report per-code-type counts from the tracking table.

Reads the `database` DSN from `config.json` in the CWD (SQLite paths, URLs
and semicolon-style MySQL DSNs are accepted).
"""
from sqlalchemy import func

from codeimport.config import load_config
from codeimport.lib.database import get_engine, get_sessionmaker, init_db
from codeimport.models.tracking import TrackingRecord


def main():
    cfg = load_config(None)
    db = cfg.get("database")
    if not db:
        print("No 'database' key found in config.json")
        return 1

    engine = get_engine(db)
    init_db(engine)
    session = get_sessionmaker(engine)()
    rows = (
        session.query(
            TrackingRecord.name,
            func.count(TrackingRecord.id),
            func.max(TrackingRecord.revision_date),
            func.max(TrackingRecord.imported_date),
        )
        .group_by(TrackingRecord.name)
        .order_by(TrackingRecord.name)
        .all()
    )

    print(f"DB: {engine.url.render_as_string(hide_password=True)}")
    if not rows:
        print("No imports recorded")
        return 0
    for name, count, latest_revision, last_import in rows:
        print(f"{name}: {count} load(s), latest revision {latest_revision}, last import {last_import}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
