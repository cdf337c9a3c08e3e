"""
Tenant (city) model.
"""

import uuid

from sqlalchemy import Column, DateTime, String

from database import Base, utcnow


class Tenant(Base):
    __tablename__ = "cities"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    code = Column(String(16), unique=True, nullable=False, index=True)
    slug = Column(String(100), unique=True, nullable=True, index=True)
    name = Column(String(255), nullable=False, default="")
    created_at = Column(DateTime, nullable=False, default=utcnow)

    def __repr__(self):
        return f"<Tenant(id={self.id}, code={self.code!r}, slug={self.slug!r})>"
