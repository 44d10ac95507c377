from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, String

from app.db.base import Base, JSONType


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    email = Column(String, nullable=True, index=True)
    name = Column(String, nullable=True)
    # {"partner": {"status": ..., "referrer_id": ..., "created_at": ..., "updated_at": ...}, "ambassador": {...}}
    applications = Column(JSONType, nullable=False, default=dict)
    is_partner = Column(Boolean, nullable=False, default=False)
    is_ambassador = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def application_for(self, role: str) -> dict:
        return dict((self.applications or {}).get(role) or {})
