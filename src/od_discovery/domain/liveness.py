"""Hysteresis state machine deciding when an entity is alive or dead.

An entity is ``Alive`` while ``streak < dead_threshold`` and ``Dead`` once the
streak reaches the threshold. Index side effects fire on the crossing edge
only:

- Unreachable moving the streak from ``T - 1`` to ``T`` -> remove from index
- Reachable while the streak is ``>= T`` -> re-add to index
- Unreachable while dead keeps counting up to ``streak_cap``; every
  ``resync_interval`` units past the threshold the removal is repeated. Removal
  is idempotent, so the repeat only heals chunks that failed earlier.

The policy is pure: it maps ``(streak, outcome)`` to a ``Transition`` and never
touches the store or the index.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .model import Outcome


DEFAULT_DEAD_THRESHOLD = 10
DEFAULT_STREAK_CAP = 110
DEFAULT_RESYNC_INTERVAL = 50


class IndexAction(str, Enum):
    NONE = "none"
    REMOVE = "remove"
    READD = "readd"


@dataclass(frozen=True, slots=True)
class Transition:
    """Result of applying one observation to one entity."""

    previous: int
    streak: int
    action: IndexAction
    resync: bool = False

    @property
    def changed(self) -> bool:
        """True when the new streak must be persisted."""
        return self.previous != self.streak


@dataclass(frozen=True, slots=True)
class LivenessPolicy:
    dead_threshold: int = DEFAULT_DEAD_THRESHOLD
    streak_cap: int = DEFAULT_STREAK_CAP
    resync_interval: int = DEFAULT_RESYNC_INTERVAL

    def __post_init__(self) -> None:
        if self.dead_threshold < 1:
            raise ValueError("dead_threshold must be at least 1")
        if self.streak_cap < self.dead_threshold:
            raise ValueError("streak_cap must be greater than or equal to dead_threshold")
        if self.resync_interval < 0:
            raise ValueError("resync_interval must not be negative")

    def is_dead(self, streak: int | None) -> bool:
        return (streak or 0) >= self.dead_threshold

    def is_alive(self, streak: int | None) -> bool:
        return not self.is_dead(streak)

    def apply(self, streak: int | None, outcome: Outcome) -> Transition:
        """Apply one freshly observed ``outcome`` to an entity at ``streak``."""
        previous = streak or 0

        if outcome is Outcome.REACHABLE:
            action = IndexAction.READD if self.is_dead(previous) else IndexAction.NONE
            return Transition(previous=previous, streak=0, action=action)

        if previous >= self.streak_cap:
            # Saturated; legacy rows above the cap are pulled back down to it.
            return Transition(previous=previous, streak=self.streak_cap, action=IndexAction.NONE)

        current = previous + 1
        if not self.is_dead(previous) and self.is_dead(current):
            return Transition(previous=previous, streak=current, action=IndexAction.REMOVE)

        if self.is_dead(previous) and self._is_resync_point(current):
            return Transition(previous=previous, streak=current, action=IndexAction.REMOVE, resync=True)

        return Transition(previous=previous, streak=current, action=IndexAction.NONE)

    def _is_resync_point(self, streak: int) -> bool:
        if not self.resync_interval:
            return False
        past_threshold = streak - self.dead_threshold
        return past_threshold > 0 and past_threshold % self.resync_interval == 0
