"""Last-known identity of panels seen by discovery."""

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from panelhub.models.base import Base


class CachedPanel(Base):
    __tablename__ = "cached_panels"

    ip: Mapped[str] = mapped_column(String(15), primary_key=True)
    name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    firmware_version: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    device_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    first_seen: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    last_seen: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    discovery_count: Mapped[int] = mapped_column(Integer, default=1)
    logging_enabled: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    long_press_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    def __repr__(self) -> str:
        return f"<CachedPanel(ip={self.ip}, name='{self.name}', seen={self.discovery_count})>"
