"""Domain layer - entities, value objects and the liveness state machine.

Nothing in here touches the network or the store.
"""

from .liveness import IndexAction, LivenessPolicy, Transition
from .model import CreateResult, IndexEntry, Link, Outcome, Root


__all__ = [
    "CreateResult",
    "IndexAction",
    "IndexEntry",
    "Link",
    "LivenessPolicy",
    "Outcome",
    "Root",
    "Transition",
]
