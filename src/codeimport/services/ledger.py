from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from codeimport.errors import StoreConnectivityError
from codeimport.lib.codetypes import CodeType
from codeimport.models.dataload import ExternalDataload
from codeimport.models.tracking import TrackingRecord


@dataclass(frozen=True)
class DataloadInfo:
    revision_date: date
    version: str


def _as_date(value) -> date:
    if isinstance(value, str):
        return date.fromisoformat(value)
    if isinstance(value, datetime):
        return value.date()
    return value


def _name(code_type) -> str:
    if not isinstance(code_type, CodeType):
        code_type = CodeType.parse(code_type)
    return code_type.family.value


class TrackingLedger:
    """Repository over the tracking tables.

    Accepts a Session and wraps every store failure in
    ``StoreConnectivityError`` after rolling the session back.
    """

    def __init__(self, session: Session):
        self.session = session

    def _fail(self, op: str, exc: Exception):
        self.session.rollback()
        return StoreConnectivityError(f"ledger {op} failed: {exc}", {"operation": op})

    def exists_exact(self, code_type, revision_date: date, version: str, checksum: str) -> bool:
        try:
            row = (
                self.session.query(TrackingRecord.id)
                .filter_by(
                    name=_name(code_type),
                    revision_date=_as_date(revision_date),
                    revision_version=version,
                    file_checksum=checksum,
                )
                .first()
            )
        except SQLAlchemyError as exc:
            raise self._fail("exists_exact", exc) from exc
        return row is not None

    def exists_any(self, code_type) -> bool:
        try:
            # fresh transaction so a competitor's commit during our wait is visible
            self.session.rollback()
            row = self.session.query(TrackingRecord.id).filter_by(name=_name(code_type)).first()
        except SQLAlchemyError as exc:
            raise self._fail("exists_any", exc) from exc
        return row is not None

    def insert(
        self,
        code_type,
        revision_date: date,
        version: str,
        checksum: str,
        loaded_at: Optional[datetime] = None,
    ) -> TrackingRecord:
        record = TrackingRecord(
            name=_name(code_type),
            revision_date=_as_date(revision_date),
            revision_version=version,
            file_checksum=checksum,
            imported_date=(loaded_at or datetime.now(timezone.utc)).replace(tzinfo=None),
        )
        try:
            self.session.add(record)
            self.session.commit()
        except SQLAlchemyError as exc:
            raise self._fail("insert", exc) from exc
        return record

    def history(self, code_type=None) -> list[TrackingRecord]:
        try:
            q = self.session.query(TrackingRecord)
            if code_type is not None:
                q = q.filter_by(name=_name(code_type))
            return q.order_by(TrackingRecord.imported_date.desc(), TrackingRecord.id.desc()).all()
        except SQLAlchemyError as exc:
            raise self._fail("history", exc) from exc

    # Dataload catalogue helpers
    def lookup_dataload(self, code_type: CodeType, filename: str, checksum: str) -> Optional[DataloadInfo]:
        """Newest known release matching (type, filename, checksum), or None."""
        try:
            row = (
                self.session.query(ExternalDataload)
                .filter_by(load_type=code_type.value, load_filename=filename, load_checksum=checksum)
                .order_by(ExternalDataload.load_release_date.desc())
                .first()
            )
        except SQLAlchemyError as exc:
            raise self._fail("lookup_dataload", exc) from exc
        if row is None:
            return None
        return DataloadInfo(revision_date=row.load_release_date, version=row.load_source)

    def register_dataload(
        self, code_type: CodeType, filename: str, checksum: str, release_date: date, source: str = "CMS"
    ) -> ExternalDataload:
        row = ExternalDataload(
            load_type=code_type.value,
            load_source=source,
            load_release_date=release_date,
            load_filename=filename,
            load_checksum=checksum,
        )
        try:
            self.session.add(row)
            self.session.commit()
        except SQLAlchemyError as exc:
            raise self._fail("register_dataload", exc) from exc
        return row
