from __future__ import annotations
"""Finite state machine utility for enforcing allowed status transitions.

Transitions are keyed by trigger so the same target state can be reached by
different actions (claim vs. reassign) with different side effects.
Usage:
    from casedesk.utils.fsm import TransitionValidator
    FSM = TransitionValidator({
        'new': {'claim': 'in_progress'},
        'in_progress': {'complete': 'completed'},
        'completed': {},
    })
    target = FSM.target_for(current_status, 'claim')

Raises InvalidTransition if the trigger is not allowed from the current state.
"""
from typing import Dict, Hashable

from casedesk.errors import InvalidTransition


def _label(value) -> str:
    return getattr(value, 'value', value)


class TransitionValidator:
    def __init__(self, graph: Dict[Hashable, Dict[Hashable, Hashable]], field_name: str = 'status'):
        self.graph = graph
        self.field_name = field_name
        self._targets = {t: dst for edges in graph.values() for t, dst in edges.items()}

    def is_terminal(self, state) -> bool:
        return not self.graph.get(state)

    def target_for(self, current, trigger):
        edges = self.graph.get(current, {})
        if trigger in edges:
            return edges[trigger]
        if self.is_terminal(current):
            reason = f"{self.field_name} is already {_label(current)}; no further transitions allowed"
        elif self._targets.get(trigger) == current:
            reason = f"{self.field_name} is already {_label(current)}"
        else:
            reason = f"{_label(trigger)} not allowed while {self.field_name} is {_label(current)}"
        raise InvalidTransition(reason, current=_label(current), trigger=_label(trigger))

__all__ = ['TransitionValidator']
