"""Lock rows for stores without native named locks."""
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.sql import func
from codeimport.models import Base


class ApplicationLock(Base):
    """One row per held import lock, keyed by the import lock name.

    A row outliving its lease (``expires_at``) was left by a crashed run and
    may be reclaimed by the next acquirer.
    """
    __tablename__ = "application_locks"

    id = Column(Integer, primary_key=True)
    lock_name = Column(String(64), unique=True, nullable=False, index=True)
    owner_token = Column(String(64), nullable=False)
    process_id = Column(Integer, nullable=False)
    hostname = Column(String(255), nullable=False)
    acquired_at = Column(DateTime, server_default=func.current_timestamp(), nullable=False)
    expires_at = Column(DateTime, nullable=True, index=True)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at < (now or datetime.now(timezone.utc).replace(tzinfo=None))

    def describe(self) -> str:
        return f"PID {self.process_id} on {self.hostname} (acquired at {self.acquired_at})"
