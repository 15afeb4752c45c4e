"""
Shared Utility Functions
"""
from leadmap.shared.utils.json_utils import safe_json_parse, strict_json_list
from leadmap.shared.utils.exceptions import (
    ConcurrentModificationError,
    EntityNotFoundError,
    InvalidCallbackError,
    WorkerDispatchError,
)

__all__ = [
    "safe_json_parse",
    "strict_json_list",
    "ConcurrentModificationError",
    "EntityNotFoundError",
    "InvalidCallbackError",
    "WorkerDispatchError",
]
