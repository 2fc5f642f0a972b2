"""Data models for lifecycle state, history and checklists."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class LifecycleHandle(BaseModel):
    """Handle given to resources that track a lifecycle instance."""

    instance_id: str
    lifecycle_name: str
    state: str


class ChecklistItemState(BaseModel):
    """Completion flag of one checklist item within a state."""

    instance_id: str
    state: str
    name: str
    checked: bool = False
    updated_by: Optional[str] = None
    updated_at: Optional[datetime] = None


class StateRecord(BaseModel):
    """Current state of a lifecycle instance."""

    instance_id: str
    lifecycle_name: str
    current_state: str
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_by: Optional[str] = None
    updated_at: Optional[datetime] = None
    # Populated only by checklist queries, keyed by item name.
    checklist_state: Optional[str] = None
    checklist: dict[str, ChecklistItemState] = Field(default_factory=dict)

    @property
    def handle(self) -> LifecycleHandle:
        return LifecycleHandle(
            instance_id=self.instance_id,
            lifecycle_name=self.lifecycle_name,
            state=self.current_state,
        )

    def is_checked(self, item_name: str) -> bool:
        item = self.checklist.get(item_name)
        return bool(item and item.checked)


class TransitionEvent(BaseModel):
    """Immutable audit record of a state change."""

    id: Optional[int] = None
    instance_id: str
    previous_state: str
    post_state: str
    user: str
    timestamp: datetime
