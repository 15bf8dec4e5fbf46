from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Column, DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel

from ..contracts import utcnow


class ObjectVersion(SQLModel, table=True):
    """One version of an object and its lifecycle milestones."""

    __tablename__ = "object_versions"
    __table_args__ = (UniqueConstraint("object_id", "version", name="uq_object_version"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    object_id: str = Field(index=True)
    version: int
    description: Optional[str] = None
    significance: Optional[str] = None
    opened_by: Optional[str] = None
    closed_by: Optional[str] = None
    opened_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False)
    )
    closed_at: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    # Set once, when the version's accessioning finishes.
    accessioned_at: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )

    @property
    def is_closed(self) -> bool:
        return self.closed_at is not None


class VersionEvent(SQLModel, table=True):
    """Audit record of version opens and closes."""

    __tablename__ = "version_events"

    id: Optional[int] = Field(default=None, primary_key=True)
    object_id: str = Field(index=True)
    event_type: str
    data: dict = Field(default_factory=dict, sa_column=Column(JSON))
    created_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False)
    )
