from datetime import date, datetime

import pytest

from codeimport.errors import ClassificationError
from codeimport.lib.codetypes import CodeType
from codeimport.models.tracking import TrackingRecord
from codeimport.services.idempotency import IdempotencyGuard


def test_insert_and_history(ledger):
    ledger.insert(CodeType.RXNORM, date(2023, 1, 1), "Standard", "aaa", loaded_at=datetime(2023, 2, 1))
    ledger.insert(CodeType.RXNORM, date(2024, 1, 1), "Standard", "bbb", loaded_at=datetime(2024, 2, 1))
    ledger.insert(CodeType.SNOMED_RF2, date(2024, 3, 1), "Complete US Extension", "ccc")

    rx = ledger.history(CodeType.RXNORM)
    assert [r.file_checksum for r in rx] == ["bbb", "aaa"]
    # RF2 loads are tracked under the SNOMED family name
    assert [r.name for r in ledger.history(CodeType.SNOMED)] == ["SNOMED"]
    assert len(ledger.history()) == 3


def test_exact_match_requires_all_four_fields(ledger):
    ledger.insert("RXNORM", date(2024, 1, 1), "Standard", "abc123")
    guard = IdempotencyGuard(ledger)

    assert guard.is_exactly_loaded("RXNORM", "2024-01-01", "Standard", "abc123") is True
    assert guard.is_exactly_loaded("SNOMED", "2024-01-01", "Standard", "abc123") is False
    assert guard.is_exactly_loaded("RXNORM", "2024-02-01", "Standard", "abc123") is False
    assert guard.is_exactly_loaded("RXNORM", "2024-01-01", "Full", "abc123") is False
    assert guard.is_exactly_loaded("RXNORM", "2024-01-01", "Standard", "abc124") is False


def test_unknown_fields_are_never_loaded(ledger):
    ledger.insert("RXNORM", date(2024, 1, 1), "Standard", "abc123")
    guard = IdempotencyGuard(ledger)
    assert guard.is_exactly_loaded("RXNORM", None, "Standard", "abc123") is False
    assert guard.is_exactly_loaded("RXNORM", "2024-01-01", "", "abc123") is False
    assert guard.is_exactly_loaded("RXNORM", "2024-01-01", "Standard", None) is False


def test_any_loaded_is_per_family(ledger):
    guard = IdempotencyGuard(ledger)
    assert guard.is_any_loaded(CodeType.SNOMED) is False
    ledger.insert(CodeType.SNOMED_RF2, date(2024, 3, 1), "International:English", "x")
    assert guard.is_any_loaded(CodeType.SNOMED) is True
    assert guard.is_any_loaded(CodeType.RXNORM) is False


def test_unknown_code_type_label_is_rejected(ledger):
    with pytest.raises(ClassificationError):
        ledger.exists_any("LOINC")


def test_dataload_lookup_prefers_newest_release(ledger):
    ledger.register_dataload(CodeType.ICD10, "icd10.zip", "sum", date(2022, 10, 1))
    ledger.register_dataload(CodeType.ICD10, "icd10.zip", "sum", date(2023, 10, 1), source="CMS-2")
    found = ledger.lookup_dataload(CodeType.ICD10, "icd10.zip", "sum")
    assert found.revision_date == date(2023, 10, 1)
    assert found.version == "CMS-2"
    assert ledger.lookup_dataload(CodeType.ICD9, "icd10.zip", "sum") is None


def test_insert_persists_row(ledger):
    rec = ledger.insert(CodeType.CQM_VALUESET, date(2023, 5, 5), "Standard", "cafe")
    assert rec.id is not None
    row = ledger.session.query(TrackingRecord).filter_by(id=rec.id).one()
    assert row.name == "CQM_VALUESET"
    assert row.revision_date == date(2023, 5, 5)
