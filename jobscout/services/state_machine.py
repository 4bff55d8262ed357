"""
Scraping session state machine.

pending -> running | failed
running -> paused | completed | failed
paused  -> running | failed
completed, failed: terminal
"""

import logging
from enum import Enum

from jobscout.core.errors import InvalidSessionTransition
from jobscout.core.schemas import SessionStatus

logger = logging.getLogger(__name__)


class SessionCommand(str, Enum):
    """External commands accepted from the status surface."""

    PAUSE = "pause"
    RESUME = "resume"
    CANCEL = "cancel"


class SessionStateMachine:
    """Legal-transition table for scraping sessions."""

    TRANSITIONS = {
        SessionStatus.PENDING: [SessionStatus.RUNNING, SessionStatus.FAILED],
        SessionStatus.RUNNING: [SessionStatus.PAUSED, SessionStatus.COMPLETED, SessionStatus.FAILED],
        SessionStatus.PAUSED: [SessionStatus.RUNNING, SessionStatus.FAILED],
        SessionStatus.COMPLETED: [],
        SessionStatus.FAILED: [],
    }

    COMMANDS = {
        SessionCommand.PAUSE: ([SessionStatus.RUNNING], SessionStatus.PAUSED),
        SessionCommand.RESUME: ([SessionStatus.PAUSED], SessionStatus.RUNNING),
        SessionCommand.CANCEL: (
            [SessionStatus.PENDING, SessionStatus.RUNNING, SessionStatus.PAUSED],
            SessionStatus.FAILED,
        ),
    }

    COMMAND_ERRORS = {
        SessionCommand.PAUSE: "Can only pause running sessions",
        SessionCommand.RESUME: "Can only resume paused sessions",
        SessionCommand.CANCEL: "Can only cancel pending, running or paused sessions",
    }

    @classmethod
    def can_transition(cls, from_status: SessionStatus, to_status: SessionStatus) -> bool:
        """Check if transition is valid."""
        return to_status in cls.TRANSITIONS.get(from_status, [])

    @classmethod
    def check_transition(cls, session_id: str, from_status: SessionStatus, to_status: SessionStatus) -> None:
        """
        Validate a status change.

        Staying in the same non-terminal status is allowed (progress updates
        while running).

        Raises:
            InvalidSessionTransition: if the table forbids the change
        """
        if from_status == to_status and not from_status.is_terminal:
            return
        if not cls.can_transition(from_status, to_status):
            logger.warning(f"Invalid transition for session {session_id}: {from_status.value} -> {to_status.value}")
            raise InvalidSessionTransition(
                f"Cannot move session from {from_status.value} to {to_status.value}",
                current=from_status,
                target=to_status,
            )

    @classmethod
    def apply_command(cls, session_id: str, current: SessionStatus, command: SessionCommand) -> SessionStatus:
        """
        Resolve a command against the current status.

        Returns:
            The status the session moves to

        Raises:
            InvalidSessionTransition: if the command is not valid from `current`
        """
        allowed, target = cls.COMMANDS[command]
        if current not in allowed:
            logger.warning(f"Rejected {command.value} for session {session_id} in status {current.value}")
            raise InvalidSessionTransition(cls.COMMAND_ERRORS[command], current=current, target=target)
        logger.info(f"Session {session_id}: {current.value} -> {target.value} ({command.value})")
        return target
