"""Classify a vendor release archive from its filename.

Detection happens in two ordered, first-match passes:

1. the code type, from a quick filename pattern
2. release metadata (version label, release date, RF2 flag) from the
   pattern table of the code type's family

Order matters in both tables: the RF2 production patterns are
specializations of the generic SNOMED patterns and must be tested first in
pass 1. ICD archives carry no date in their name; their metadata comes from
the ``supported_external_dataloads`` ledger table instead.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Callable, Optional, Protocol

from codeimport.lib.codetypes import CodeType
from codeimport.lib.hashing import md5_file


def _mmddyyyy(raw: str) -> date:
    return date(int(raw[4:8]), int(raw[0:2]), int(raw[2:4]))


def _yyyymmdd(raw: str) -> date:
    return date(int(raw[0:4]), int(raw[4:6]), int(raw[6:8]))


@dataclass(frozen=True)
class ReleasePattern:
    regex: re.Pattern
    version: str
    parse_date: Callable[[str], date]
    rf2: bool = False


def _p(regex: str, version: str, parse_date=_yyyymmdd, rf2: bool = False) -> ReleasePattern:
    return ReleasePattern(re.compile(regex), version, parse_date, rf2)


CODE_TYPE_PATTERNS: list[tuple[re.Pattern, CodeType]] = [
    (re.compile(r"RxNorm_full_"), CodeType.RXNORM),
    (re.compile(r"SnomedCT_.*RF2_PRODUCTION_"), CodeType.SNOMED_RF2),
    (re.compile(r"SnomedCT_"), CodeType.SNOMED),
    (re.compile(r"e[pc]_.*_cms_.*\.xml\.zip"), CodeType.CQM_VALUESET),
    (re.compile(r"icd10", re.IGNORECASE), CodeType.ICD10),
    (re.compile(r"icd9", re.IGNORECASE), CodeType.ICD9),
]

RELEASE_PATTERNS: dict[CodeType, list[ReleasePattern]] = {
    CodeType.RXNORM: [
        _p(r"RxNorm_full_([0-9]{8})\.zip", "Standard", _mmddyyyy),
    ],
    CodeType.SNOMED: [
        _p(r"SnomedCT_INT_([0-9]{8})\.zip", "International:English"),
        _p(r"SnomedCT_Release_INT_([0-9]{8})\.zip", "International:English"),
        _p(r"SnomedCT_RF1Release_INT_([0-9]{8})\.zip", "International:English"),
        _p(r"SnomedCT_Release_US[0-9]*_([0-9]{8})\.zip", "US Extension"),
        _p(r"sct1_National_US_([0-9]{8})\.zip", "US Extension"),
        _p(r"SnomedCT_RF1Release_US[0-9]*_([0-9]{8})\.zip", "Complete US Extension"),
        _p(r"SnomedCT_Release-es_INT_([0-9]{8})\.zip", "International:Spanish"),
        _p(r"SnomedCT_InternationalRF2_PRODUCTION_([0-9]{8})[0-9a-zA-Z]{8}\.zip",
           "International:English", rf2=True),
        _p(r"SnomedCT_ManagedServiceIE_PRODUCTION_IE1000220_([0-9]{8})[0-9a-zA-Z]{8}\.zip",
           "International:English", rf2=True),
        _p(r"SnomedCT_USEditionRF2_PRODUCTION_([0-9]{8})[0-9a-zA-Z]{8}\.zip",
           "Complete US Extension", rf2=True),
        _p(r"SnomedCT_ManagedServiceUS_PRODUCTION_US[0-9]{7}_([0-9a-zA-Z]{8})T[0-9Z]{7}\.zip",
           "Complete US Extension", rf2=True),
        _p(r"SnomedCT_SpanishRelease-es_PRODUCTION_([0-9]{8})[0-9a-zA-Z]{8}\.zip",
           "International:Spanish", rf2=True),
    ],
    CodeType.CQM_VALUESET: [
        _p(r"e[pc]_.*_cms_([0-9]{8})\.xml\.zip", "Standard"),
    ],
}


class DataloadLookup(Protocol):
    def lookup_dataload(self, code_type: CodeType, filename: str, checksum: str): ...


@dataclass(frozen=True)
class Artifact:
    path: str
    filename: str
    code_type: CodeType
    version: str
    revision_date: Optional[date]
    rf2: bool
    us_extension: bool
    checksum: str
    supported: bool

    @property
    def load_type(self) -> CodeType:
        """Code type the loader runs as; an RF2 release of SNOMED loads as SNOMED_RF2."""
        if self.rf2 and self.code_type.family is CodeType.SNOMED:
            return CodeType.SNOMED_RF2
        return self.code_type

    @property
    def tracking_name(self) -> str:
        return self.code_type.family.value

    @property
    def metadata_complete(self) -> bool:
        return bool(self.supported and self.version and self.revision_date and self.checksum)

    def missing_metadata(self) -> list[str]:
        missing = []
        if not self.revision_date:
            missing.append("revision_date")
        if not self.version:
            missing.append("version")
        if not self.supported:
            missing.append("supported format")
        return missing


def detect_code_type(path: str) -> Optional[CodeType]:
    """Auto-detect code type from filename, or None when nothing matches."""
    filename = Path(path).name
    for regex, code_type in CODE_TYPE_PATTERNS:
        if regex.search(filename):
            return code_type
    return None


class MetadataDetector:
    """Builds an ``Artifact`` for a release file.

    ``ledger`` is only needed for ICD files, whose release date and source are
    recorded in ``supported_external_dataloads``.
    """

    def __init__(self, ledger: Optional[DataloadLookup] = None):
        self.ledger = ledger

    def detect(self, path: str, code_type: Optional[CodeType] = None) -> Optional[Artifact]:
        """Classify ``path``; returns None when the code type is unknown.

        An explicit ``code_type`` overrides filename detection. Metadata that
        cannot be matched leaves the artifact with ``supported=False``.
        """
        if code_type is None:
            code_type = detect_code_type(path)
            if code_type is None:
                return None

        filename = Path(path).name
        checksum = md5_file(path)
        version, revision_date, rf2, supported = "", None, False, False

        if code_type.is_icd:
            found = self.ledger.lookup_dataload(code_type, filename, checksum) if self.ledger else None
            if found is not None:
                version, revision_date, supported = found.version, found.revision_date, True
        else:
            for pattern in RELEASE_PATTERNS.get(code_type.family, []):
                m = pattern.regex.search(filename)
                if not m:
                    continue
                try:
                    revision_date = pattern.parse_date(m.group(1))
                except ValueError:
                    # digits in the name that are not a calendar date
                    revision_date = None
                version, rf2, supported = pattern.version, pattern.rf2, True
                break

        return Artifact(
            path=str(path),
            filename=filename,
            code_type=code_type,
            version=version,
            revision_date=revision_date,
            rf2=rf2,
            us_extension="US" in version,
            checksum=checksum,
            supported=supported,
        )
