"""Trade idea lifecycle.

An idea starts PENDING and moves exactly once, either to EXECUTED (a filled trade was
linked to it) or to SKIPPED (the user passed on it). Both end states are terminal.
"""
from __future__ import annotations

import enum

from paperdesk.errors import InvalidIdeaTransition


class IdeaStatus(str, enum.Enum):
    PENDING = "PENDING"
    EXECUTED = "EXECUTED"
    SKIPPED = "SKIPPED"

    @property
    def is_terminal(self) -> bool:
        return not _TRANSITIONS[self]

    def can_transition_to(self, target: IdeaStatus) -> bool:
        return target in _TRANSITIONS[self]

    def transition(self, target: IdeaStatus | str) -> IdeaStatus:
        target = IdeaStatus(target)
        if not self.can_transition_to(target):
            raise InvalidIdeaTransition(f"Trade idea cannot move from {self.value} to {target.value}.")
        return target


_TRANSITIONS: dict[IdeaStatus, frozenset[IdeaStatus]] = {
    IdeaStatus.PENDING: frozenset({IdeaStatus.EXECUTED, IdeaStatus.SKIPPED}),
    IdeaStatus.EXECUTED: frozenset(),
    IdeaStatus.SKIPPED: frozenset(),
}
