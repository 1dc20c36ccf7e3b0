"""
SQLAlchemy model for contractor profiles (supply side of surge pricing).
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, DateTime, Numeric, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class ContractorProfile(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "contractor_profiles"

    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, unique=True)
    display_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)

    # Last reported position
    current_latitude: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 7), nullable=True)
    current_longitude: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 7), nullable=True)
    location_updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __repr__(self) -> str:
        return (
            f"<ContractorProfile(id={self.id}, available={self.is_available}, "
            f"lat={self.current_latitude}, lng={self.current_longitude})>"
        )
