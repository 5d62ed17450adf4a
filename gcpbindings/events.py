from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterator

from gcpbindings import console


@dataclass(frozen=True)
class MissingPermissionEvent:
    step_id: str
    permission: str

    def to_dict(self) -> dict:
        return {"stepId": self.step_id, "permission": self.permission}


MissingPermissionNotifier = Callable[..., None]


def warn_missing_permission(*, step_id: str, permission: str) -> None:
    console.warn(
        f"Missing permission `{permission}`; step `{step_id}` collected partial data only.",
        stepId=step_id,
        permission=permission,
    )


class MissingPermissionEvents:
    """Missing-permission events published during one run, for the report."""

    def __init__(self) -> None:
        self._events: list[MissingPermissionEvent] = []

    def publish(self, *, step_id: str, permission: str) -> None:
        self._events.append(MissingPermissionEvent(step_id=step_id, permission=permission))
        warn_missing_permission(step_id=step_id, permission=permission)

    def __iter__(self) -> Iterator[MissingPermissionEvent]:
        return iter(self._events)

    def __len__(self) -> int:
        return len(self._events)
