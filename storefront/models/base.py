from sqlalchemy import Column, DateTime

from ..utils.dates import utcnow


class TimeStampMixin:
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
