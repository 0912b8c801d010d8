from datetime import date

from codeimport.lib.codetypes import CodeType
from codeimport.lib.detector import MetadataDetector, detect_code_type
from codeimport.lib.hashing import md5_file
from codeimport.services.ledger import TrackingLedger
from codeimport.lib.database import InMemoryAdapter


def _file(tmp_path, name, content=b"archive"):
    p = tmp_path / name
    p.write_bytes(content)
    return str(p)


def test_rxnorm_date_is_mmddyyyy(tmp_path):
    path = _file(tmp_path, "RxNorm_full_01012024.zip")
    a = MetadataDetector().detect(path)
    assert a.code_type is CodeType.RXNORM
    assert a.version == "Standard"
    assert a.revision_date == date(2024, 1, 1)
    assert a.supported and not a.rf2 and not a.us_extension
    assert a.checksum == md5_file(path)


def test_rxnorm_month_and_day_are_not_swapped(tmp_path):
    a = MetadataDetector().detect(_file(tmp_path, "RxNorm_full_03152024.zip"))
    assert a.revision_date == date(2024, 3, 15)


def test_snomed_rf1_international(tmp_path):
    a = MetadataDetector().detect(_file(tmp_path, "SnomedCT_INT_20230131.zip"))
    assert a.code_type is CodeType.SNOMED
    assert a.version == "International:English"
    assert a.revision_date == date(2023, 1, 31)
    assert a.load_type is CodeType.SNOMED


def test_snomed_us_extension_flag(tmp_path):
    a = MetadataDetector().detect(_file(tmp_path, "SnomedCT_Release_US1000124_20230301.zip"))
    assert a.version == "US Extension"
    assert a.us_extension is True


def test_rf2_production_name_classified_before_generic_snomed(tmp_path):
    name = "SnomedCT_USEditionRF2_PRODUCTION_20240301T120000Z.zip"
    assert detect_code_type(name) is CodeType.SNOMED_RF2
    a = MetadataDetector().detect(_file(tmp_path, name))
    assert a.rf2 is True
    assert a.version == "Complete US Extension"
    assert a.revision_date == date(2024, 3, 1)
    assert a.load_type is CodeType.SNOMED_RF2
    assert a.tracking_name == "SNOMED"


def test_managed_service_us_is_promoted_to_rf2(tmp_path):
    name = "SnomedCT_ManagedServiceUS_PRODUCTION_US1000124_20240301T120000Z.zip"
    a = MetadataDetector().detect(_file(tmp_path, name))
    assert a.code_type is CodeType.SNOMED
    assert a.rf2 is True
    assert a.load_type is CodeType.SNOMED_RF2
    assert a.revision_date == date(2024, 3, 1)


def test_cqm_valueset(tmp_path):
    a = MetadataDetector().detect(_file(tmp_path, "ep_ec_eh_cms_20230505.xml.zip"))
    assert a.code_type is CodeType.CQM_VALUESET
    assert a.version == "Standard"
    assert a.revision_date == date(2023, 5, 5)


def test_unclassified_returns_none(tmp_path):
    assert MetadataDetector().detect(_file(tmp_path, "random_archive.zip")) is None


def test_override_without_matching_metadata(tmp_path):
    a = MetadataDetector().detect(_file(tmp_path, "random_archive.zip"), CodeType.RXNORM)
    assert a.code_type is CodeType.RXNORM
    assert a.supported is False
    assert a.version == "" and a.revision_date is None
    assert a.metadata_complete is False
    assert "revision_date" in a.missing_metadata()


def test_impossible_date_leaves_revision_unknown(tmp_path):
    a = MetadataDetector().detect(_file(tmp_path, "RxNorm_full_13452024.zip"))
    assert a.revision_date is None
    assert a.metadata_complete is False


def test_icd_metadata_comes_from_dataload_ledger(tmp_path):
    path = _file(tmp_path, "icd10cm_order_2024.txt.zip", b"icd content")
    ledger = TrackingLedger(InMemoryAdapter().session())
    ledger.register_dataload(CodeType.ICD10, "icd10cm_order_2024.txt.zip", md5_file(path), date(2023, 10, 1))

    a = MetadataDetector(ledger).detect(path)
    assert a.code_type is CodeType.ICD10
    assert a.version == "CMS"
    assert a.revision_date == date(2023, 10, 1)
    assert a.supported is True


def test_icd_with_different_checksum_is_unsupported(tmp_path):
    path = _file(tmp_path, "icd10cm_order_2024.txt.zip", b"icd content")
    ledger = TrackingLedger(InMemoryAdapter().session())
    ledger.register_dataload(CodeType.ICD10, "icd10cm_order_2024.txt.zip", "0" * 32, date(2023, 10, 1))

    a = MetadataDetector(ledger).detect(path)
    assert a.supported is False
    assert a.revision_date is None


def test_checksum_depends_on_content_not_name(tmp_path):
    a = MetadataDetector().detect(_file(tmp_path, "RxNorm_full_01012024.zip", b"same"))
    sub = tmp_path / "other"
    sub.mkdir()
    b = MetadataDetector().detect(_file(sub, "RxNorm_full_02012024.zip", b"same"))
    assert a.checksum == b.checksum
