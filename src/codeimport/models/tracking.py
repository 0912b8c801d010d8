from sqlalchemy import Column, Integer, String, Date, DateTime, Index
from sqlalchemy.sql import func
from codeimport.models import Base


class TrackingRecord(Base):
    """One completed load of a code table release.

    Rows are only ever appended; several releases of the same code table
    coexist and the newest ``imported_date`` is the current one.
    """
    __tablename__ = "standardized_tables_track"
    __table_args__ = (
        Index("ix_tables_track_release", "name", "revision_date", "revision_version", "file_checksum"),
    )

    id = Column(Integer, primary_key=True)
    # tracking name is the code type family (SNOMED for RF1 and RF2 loads)
    name = Column(String(255), nullable=False, index=True)
    revision_version = Column(String(255), nullable=False)
    revision_date = Column(Date, nullable=False)
    file_checksum = Column(String(32), nullable=False)
    imported_date = Column(DateTime, server_default=func.current_timestamp(), nullable=False)
