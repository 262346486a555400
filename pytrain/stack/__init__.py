"""Stack model, storage and the algorithms that keep a stack consistent."""

from .models import Stack, StackBranch, children_of, descendants_in_order, hierarchy_order
from .repository import StackRepository
from .propagate import PropagationResult, RebasePropagator
from .parent import detect_smart_parent
from .push import PushSafetyGate, MAX_AHEAD

__all__ = [
    "Stack", "StackBranch", "children_of", "descendants_in_order", "hierarchy_order",
    "StackRepository", "PropagationResult", "RebasePropagator", "detect_smart_parent",
    "PushSafetyGate", "MAX_AHEAD",
]
