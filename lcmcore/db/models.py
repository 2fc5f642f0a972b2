from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Column, DateTime
from sqlmodel import Field, SQLModel


class LifecycleStateRow(SQLModel, table=True):
    """Current state of one lifecycle instance."""

    __tablename__ = "lifecycle_state"

    instance_id: str = Field(primary_key=True)
    lifecycle_name: str = Field(index=True)
    current_state: str = Field(index=True)
    created_by: Optional[str] = None
    created_at: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime(timezone=True))
    )
    updated_by: Optional[str] = None
    updated_at: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime(timezone=True))
    )


class TransitionEventRow(SQLModel, table=True):
    """Append-only transition history."""

    __tablename__ = "lifecycle_history"

    id: Optional[int] = Field(default=None, primary_key=True)
    instance_id: str = Field(index=True)
    previous_state: str
    post_state: str
    username: str
    timestamp: datetime = Field(
        sa_column=Column(DateTime(timezone=True), nullable=False)
    )


class ChecklistItemRow(SQLModel, table=True):
    """Checklist completion keyed by instance, state and item name."""

    __tablename__ = "lifecycle_checklist"

    instance_id: str = Field(primary_key=True)
    state: str = Field(primary_key=True)
    item_name: str = Field(primary_key=True)
    checked: bool = False
    updated_by: Optional[str] = None
    updated_at: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime(timezone=True))
    )
