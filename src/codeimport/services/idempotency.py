from datetime import date
from typing import Optional

from codeimport.services.ledger import TrackingLedger


class IdempotencyGuard:
    """Read-only "was this already loaded?" checks over the tracking ledger."""

    def __init__(self, ledger: TrackingLedger):
        self.ledger = ledger

    def is_exactly_loaded(
        self,
        code_type,
        revision_date: Optional[date],
        version: Optional[str],
        checksum: Optional[str],
    ) -> bool:
        """True iff a ledger row matches all four fields.

        Unknown inputs can never prove a release was loaded, so any missing
        field answers False without touching the store.
        """
        if not (code_type and revision_date and version and checksum):
            return False
        return self.ledger.exists_exact(code_type, revision_date, version, checksum)

    def is_any_loaded(self, code_type) -> bool:
        """True iff any release of the code type family was ever loaded.

        Only meaningful right after a contended lock wait: a competitor that
        held the lock most likely just loaded what we were about to load.
        """
        return self.ledger.exists_any(code_type)
