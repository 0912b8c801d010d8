from sqlalchemy.orm import declarative_base

Base = declarative_base()

from .tracking import TrackingRecord  # noqa: F401
from .dataload import ExternalDataload  # noqa: F401
from .application_lock import ApplicationLock  # noqa: F401
