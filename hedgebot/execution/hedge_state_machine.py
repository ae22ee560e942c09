"""
Hedge State Machine - explicit round lifecycle for the hedge engine.

- One enum of states and one table of allowed transitions
- Illegal transitions raise InvalidTransitionError instead of being ignored
- Bounded audit trail of transitions for debugging
- Optional hook so metrics can follow the current state
"""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Callable, Deque, Dict, FrozenSet, List, Optional

from hedgebot.core.errors import InvalidTransitionError
from hedgebot.infra.logging_cfg import log_event

log = logging.getLogger("hedgebot")


class HedgeState(Enum):
    """
    Engine states.

    State Diagram:

    IDLE ──> OPENING ──> MONITORING ──> HOLDING ──> CLOSING ──> SETTLING ──> IDLE
              ▲  │            │                       ▲  │
              └──┘ retry      └──> OPENING (retry)    └──┘ retry

    EMERGENCY_CLOSE is reachable from every state and always returns to IDLE.
    """
    IDLE = auto()
    OPENING = auto()
    MONITORING = auto()
    HOLDING = auto()
    CLOSING = auto()
    SETTLING = auto()
    EMERGENCY_CLOSE = auto()


@dataclass
class StateTransition:
    """Record of a state transition."""
    from_state: HedgeState
    to_state: HedgeState
    timestamp_ms: int
    reason: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


VALID_TRANSITIONS: Dict[HedgeState, FrozenSet[HedgeState]] = {
    HedgeState.IDLE: frozenset({
        HedgeState.OPENING,
        HedgeState.CLOSING,          # leftover exposure from a previous run
        HedgeState.EMERGENCY_CLOSE,
    }),
    HedgeState.OPENING: frozenset({
        HedgeState.OPENING,          # retry
        HedgeState.MONITORING,
        HedgeState.EMERGENCY_CLOSE,
    }),
    HedgeState.MONITORING: frozenset({
        HedgeState.HOLDING,
        HedgeState.OPENING,          # neither leg filled, retry
        HedgeState.EMERGENCY_CLOSE,
    }),
    HedgeState.HOLDING: frozenset({
        HedgeState.CLOSING,
        HedgeState.EMERGENCY_CLOSE,
    }),
    HedgeState.CLOSING: frozenset({
        HedgeState.CLOSING,          # residual, retry
        HedgeState.SETTLING,
        HedgeState.IDLE,             # nothing to close, or residual deferred
        HedgeState.EMERGENCY_CLOSE,
    }),
    HedgeState.SETTLING: frozenset({
        HedgeState.IDLE,
        HedgeState.EMERGENCY_CLOSE,
    }),
    HedgeState.EMERGENCY_CLOSE: frozenset({
        HedgeState.IDLE,
    }),
}


def is_valid_transition(from_state: HedgeState, to_state: HedgeState) -> bool:
    return to_state in VALID_TRANSITIONS.get(from_state, frozenset())


class HedgeStateMachine:
    """Tracks the engine state and validates every move against VALID_TRANSITIONS."""

    def __init__(
        self,
        log_event_callback: Optional[Callable[..., None]] = None,
        on_state_change: Optional[Callable[[HedgeState, HedgeState], None]] = None,
        history_size: int = 200,
    ) -> None:
        self._state = HedgeState.IDLE
        self._history: Deque[StateTransition] = deque(maxlen=history_size)
        self._log_event = log_event_callback or self._default_log
        self._on_state_change = on_state_change
        self._stats = {"transitions": 0, "invalid_transitions": 0, "emergency_closes": 0}

    def _default_log(self, event: str, **kwargs: Any) -> None:
        log_event(log, event, **kwargs)

    @property
    def state(self) -> HedgeState:
        return self._state

    @property
    def history(self) -> List[StateTransition]:
        return list(self._history)

    def get_stats(self) -> Dict[str, int]:
        return dict(self._stats)

    def can_transition(self, to_state: HedgeState) -> bool:
        return is_valid_transition(self._state, to_state)

    def transition(self, to_state: HedgeState, reason: Optional[str] = None, **metadata: Any) -> StateTransition:
        """
        Move to ``to_state``.

        Raises:
            InvalidTransitionError: the table does not allow the move.
        """
        from_state = self._state
        if not is_valid_transition(from_state, to_state):
            self._stats["invalid_transitions"] += 1
            self._log_event(
                "state_invalid_transition",
                from_state=from_state.name,
                to_state=to_state.name,
                reason=reason,
            )
            raise InvalidTransitionError(f"{from_state.name} -> {to_state.name} is not allowed")

        record = StateTransition(
            from_state=from_state,
            to_state=to_state,
            timestamp_ms=int(time.time() * 1000),
            reason=reason,
            metadata=metadata,
        )
        self._history.append(record)
        self._state = to_state
        self._stats["transitions"] += 1
        if to_state is HedgeState.EMERGENCY_CLOSE:
            self._stats["emergency_closes"] += 1

        self._log_event(
            "state_transition",
            from_state=from_state.name,
            to_state=to_state.name,
            reason=reason,
            **metadata,
        )
        if self._on_state_change is not None:
            self._on_state_change(from_state, to_state)
        return record

    def enter_emergency(self, reason: str) -> None:
        """EMERGENCY_CLOSE from any state (no-op if already there)."""
        if self._state is not HedgeState.EMERGENCY_CLOSE:
            self.transition(HedgeState.EMERGENCY_CLOSE, reason=reason)

    def reset_to_idle(self, reason: Optional[str] = None) -> None:
        """
        Return to IDLE after an aborted operation.

        Only legal routes are taken: states without a direct edge to IDLE pass
        through EMERGENCY_CLOSE, which is what an abort is.
        """
        if self._state is HedgeState.IDLE:
            return
        if not self.can_transition(HedgeState.IDLE):
            self.transition(HedgeState.EMERGENCY_CLOSE, reason=reason)
        self.transition(HedgeState.IDLE, reason=reason)
