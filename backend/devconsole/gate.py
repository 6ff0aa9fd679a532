"""Confirmation gate: holds at most one pending action per session"""
import logging
from enum import Enum
from typing import Optional

from devconsole.errors import GateError
from devconsole.models import PendingAction, ProposedAction
from devconsole.risk import assess_risk

logger = logging.getLogger(__name__)


class GateState(str, Enum):
    EMPTY = "empty"
    PENDING = "pending"
    APPROVED = "approved"
    CANCELLED = "cancelled"


class ConfirmationGate:
    """
    empty -> pending -> {approved, cancelled}

    With auto-execute on, a proposal goes straight to approved whatever its
    risk tier. An approved action stays in the gate until the controller
    takes it for execution; a cancelled one is dropped immediately.
    """

    def __init__(self):
        self.state = GateState.EMPTY
        self._action: Optional[PendingAction] = None

    @property
    def pending(self) -> Optional[PendingAction]:
        """Action awaiting a decision, if any"""
        return self._action if self.state == GateState.PENDING else None

    @property
    def is_empty(self) -> bool:
        return self._action is None

    def propose(self, action: ProposedAction, auto_execute: bool = False) -> Optional[PendingAction]:
        """
        Take a proposed action. Returns None, leaving the gate untouched,
        if an action is already held.
        """
        if self._action is not None:
            logger.warning("Gate already holds %s; ignoring proposal %s", self._action.name, action.name)
            return None

        self._action = PendingAction(name=action.name, args=action.args, risk=assess_risk(action.name))
        if auto_execute:
            self.state = GateState.APPROVED
            logger.info("Auto-approved %s (risk=%s)", self._action.name, self._action.risk)
        else:
            self.state = GateState.PENDING
            logger.info("Awaiting confirmation for %s (risk=%s)", self._action.name, self._action.risk)
        return self._action

    def confirm(self) -> PendingAction:
        if self.state != GateState.PENDING:
            raise GateError("There is no action awaiting confirmation.")
        self.state = GateState.APPROVED
        logger.info("Confirmed %s", self._action.name)
        return self._action

    def cancel(self) -> PendingAction:
        if self.state != GateState.PENDING:
            raise GateError("There is no action awaiting confirmation.")
        action = self._action
        self.state = GateState.CANCELLED
        self._action = None
        logger.info("Cancelled %s", action.name)
        return action

    def take(self) -> PendingAction:
        """Hand the approved action over for execution and reset to empty"""
        if self.state != GateState.APPROVED:
            raise GateError("No approved action to execute.")
        action = self._action
        self._action = None
        self.state = GateState.EMPTY
        return action
