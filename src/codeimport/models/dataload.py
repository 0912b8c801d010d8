from sqlalchemy import Column, Integer, String, Date
from codeimport.models import Base


class ExternalDataload(Base):
    """Known vendor release files, keyed by filename and checksum.

    ICD archives carry no release date in their names, so the detector looks
    the file up here instead.
    """
    __tablename__ = "supported_external_dataloads"

    load_id = Column(Integer, primary_key=True)
    load_type = Column(String(24), nullable=False, index=True)
    load_source = Column(String(24), nullable=False, default="CMS")
    load_release_date = Column(Date, nullable=False)
    load_filename = Column(String(256), nullable=False)
    load_checksum = Column(String(32), nullable=False)
