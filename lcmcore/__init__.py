"""lcmcore: lifecycle state tracking for APIs, applications and other resources."""

from .config import LcmConfig, load_config
from .engine import LifecycleEngine, LifecycleHistory
from .exceptions import (
    DuplicateInstanceError,
    ErrorKind,
    LifecycleError,
    NotFoundError,
    PersistenceError,
    StaleStateError,
)
from .managed import ManagedLifecycle
from .models import ChecklistItemState, LifecycleHandle, StateRecord, TransitionEvent
from .operations import LifecycleOperations
from .persistence import get_store

__version__ = "0.1.0"
__all__ = [
    "ChecklistItemState",
    "DuplicateInstanceError",
    "ErrorKind",
    "LcmConfig",
    "LifecycleEngine",
    "LifecycleError",
    "LifecycleHandle",
    "LifecycleHistory",
    "LifecycleOperations",
    "ManagedLifecycle",
    "NotFoundError",
    "PersistenceError",
    "StaleStateError",
    "StateRecord",
    "TransitionEvent",
    "get_store",
    "load_config",
]
