from .lifecycle_db import LifecycleDB
from .models import ChecklistItemRow, LifecycleStateRow, TransitionEventRow

__all__ = [
    "ChecklistItemRow",
    "LifecycleDB",
    "LifecycleStateRow",
    "TransitionEventRow",
]
