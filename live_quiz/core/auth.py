"""Capability checks delegated to the hosting platform."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol


class Authorizer(Protocol):
    """Answers whether a participant may control an activity."""

    def is_instructor(self, participant_id: str, activity_id: str) -> bool: ...


class StaticRoster:
    """Authorizer backed by a fixed set of instructor ids.

    Ids registered without an activity control every activity.
    """

    def __init__(
        self,
        instructors: Iterable[str] = (),
        per_activity: dict[str, set[str]] | None = None,
    ) -> None:
        self._global = set(instructors)
        self._per_activity = {key: set(value) for key, value in (per_activity or {}).items()}

    def is_instructor(self, participant_id: str, activity_id: str) -> bool:
        if participant_id in self._global:
            return True
        return participant_id in self._per_activity.get(activity_id, set())

    def grant(self, participant_id: str, activity_id: str | None = None) -> None:
        if activity_id is None:
            self._global.add(participant_id)
        else:
            self._per_activity.setdefault(activity_id, set()).add(participant_id)
