#!/usr/bin/env python
"""Register a known ICD release file so the detector can date it.

ICD archive names carry no release date; the detector looks the file up in
`supported_external_dataloads` by (type, filename, md5) instead.

Usage:
  python scripts/register_dataload.py ICD10 /path/to/icd10cm_order_2024.txt.zip 2023-10-01 [--source CMS]
"""
from __future__ import annotations

import argparse
from datetime import date
from pathlib import Path

from codeimport.errors import CodeImportError
from codeimport.lib.codetypes import CodeType
from codeimport.lib.database import get_engine, get_sessionmaker, init_db
from codeimport.lib.hashing import md5_file
from codeimport.services.ledger import TrackingLedger


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("code_type")
    parser.add_argument("file_path")
    parser.add_argument("release_date", help="YYYY-MM-DD")
    parser.add_argument("--source", default="CMS")
    parser.add_argument("--database", default="sqlite:///codeimport.db")
    args = parser.parse_args(argv)

    try:
        code_type = CodeType.parse(args.code_type)
        release = date.fromisoformat(args.release_date)
    except (CodeImportError, ValueError) as e:
        print(f"ERROR: {e}")
        return 1

    path = Path(args.file_path)
    if not path.is_file():
        print(f"ERROR: File not found: {path}")
        return 1

    engine = get_engine(args.database)
    init_db(engine)
    ledger = TrackingLedger(get_sessionmaker(engine)())
    checksum = md5_file(str(path))
    ledger.register_dataload(code_type, path.name, checksum, release, source=args.source)
    print(f"Registered {code_type.value} {path.name} ({release}, {args.source}) md5={checksum}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
