"""Supported code table types."""
from __future__ import annotations

import enum

from codeimport.errors import ClassificationError


class CodeType(str, enum.Enum):
    RXNORM = "RXNORM"
    SNOMED = "SNOMED"
    SNOMED_RF2 = "SNOMED_RF2"
    ICD9 = "ICD9"
    ICD10 = "ICD10"
    CQM_VALUESET = "CQM_VALUESET"

    @classmethod
    def parse(cls, label: str) -> "CodeType":
        """Case-insensitive lookup; unknown labels are a classification error."""
        try:
            return cls(str(label).strip().upper())
        except ValueError:
            supported = ", ".join(t.value for t in cls)
            raise ClassificationError(
                f"Unsupported code type: {label}. Supported types: {supported}",
                {"code_type": label},
            ) from None

    @property
    def family(self) -> "CodeType":
        # RF1 and RF2 SNOMED releases are tracked and locked as one dataset
        if self is CodeType.SNOMED_RF2:
            return CodeType.SNOMED
        return self

    @property
    def is_icd(self) -> bool:
        return self in (CodeType.ICD9, CodeType.ICD10)


def supported_patterns() -> dict[CodeType, list[str]]:
    return {
        CodeType.RXNORM: ["RxNorm_full_MMDDYYYY.zip"],
        CodeType.SNOMED: ["SnomedCT_INT_YYYYMMDD.zip", "SnomedCT_Release_INT_YYYYMMDD.zip"],
        CodeType.SNOMED_RF2: [
            "SnomedCT_InternationalRF2_PRODUCTION_*.zip",
            "SnomedCT_USEditionRF2_PRODUCTION_*.zip",
        ],
        CodeType.CQM_VALUESET: ["ep_*_cms_YYYYMMDD.xml.zip", "ec_*_cms_YYYYMMDD.xml.zip"],
        CodeType.ICD9: ["*icd9*.zip"],
        CodeType.ICD10: ["*icd10*.zip"],
    }
