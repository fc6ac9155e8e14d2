"""Workflow gate: which tools are legal in the current lifecycle phase."""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Deque, Dict, List, Optional

from .browser.session import SessionEvent, SessionState
from .errors import BrowserNotInitializedError, WorkflowViolationError
from .tools import LIFECYCLE_CLOSE, LIFECYCLE_INIT, ToolSpec

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    NOT_READY = "NotReady"
    READY = "Ready"


_READY_STATES = {SessionState.READY, SessionState.BUSY}


@dataclass(frozen=True)
class HistoryEntry:
    tool: str
    phase: Phase
    accepted: bool
    at: float

    def to_dict(self) -> Dict[str, object]:
        return {"tool": self.tool, "phase": self.phase.value, "accepted": self.accepted, "at": self.at}


class WorkflowValidator:
    """Accept or reject a tool for the current phase.

    The phase is a coarse mirror of the session state and is only moved by
    :meth:`on_session_transition`, which the session manager calls on every
    state change.  :meth:`check` never touches the session.
    """

    def __init__(self, *, history_size: int = 100) -> None:
        self._phase = Phase.NOT_READY
        self._history: Deque[HistoryEntry] = deque(maxlen=history_size)

    @property
    def phase(self) -> Phase:
        return self._phase

    def history(self) -> List[Dict[str, object]]:
        return [entry.to_dict() for entry in self._history]

    def on_session_transition(
        self, old: SessionState, new: SessionState, event: SessionEvent
    ) -> None:
        phase = Phase.READY if new in _READY_STATES else Phase.NOT_READY
        if phase is not self._phase:
            logger.debug("Workflow phase %s -> %s (%s)", self._phase.value, phase.value, event.value)
            self._phase = phase

    def check(self, spec: ToolSpec) -> None:
        """Raise a workflow error if ``spec`` may not run in the current phase."""
        phase = self._phase
        error: Optional[WorkflowViolationError] = None
        if spec.lifecycle == LIFECYCLE_INIT:
            if phase is not Phase.NOT_READY:
                error = WorkflowViolationError(
                    spec.name,
                    expected_phase=Phase.NOT_READY.value,
                    actual_phase=phase.value,
                    message="Browser is already initialized; call browser_close first.",
                )
        elif spec.lifecycle == LIFECYCLE_CLOSE:
            if phase is not Phase.READY:
                error = WorkflowViolationError(
                    spec.name,
                    expected_phase=Phase.READY.value,
                    actual_phase=phase.value,
                    message="Browser is not initialized; there is no session to close.",
                )
        elif spec.requires_ready and phase is not Phase.READY:
            error = BrowserNotInitializedError(spec.name, actual_phase=phase.value)
        self._history.append(HistoryEntry(spec.name, phase, error is None, time.time()))
        if error is not None:
            raise error


__all__ = ["HistoryEntry", "Phase", "WorkflowValidator"]
