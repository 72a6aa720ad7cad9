"""
Infringement Workflow Service

Enforces the infringement status lifecycle and records every transition
in the ``status_transitions`` audit table.
"""

import logging
from datetime import datetime
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from enforcement.models.database import Infringement, StatusTransition

logger = logging.getLogger(__name__)

STATUS_WORKFLOW: dict[str, list[str]] = {
    "pending_verification": ["active", "false_positive"],
    "active": ["takedown_sent", "false_positive", "archived"],
    "takedown_sent": ["removed", "disputed", "active", "archived"],
    "disputed": ["takedown_sent", "archived"],
    "removed": [],
    "false_positive": [],
    "archived": [],
}

TERMINAL_STATUSES = frozenset(status for status, targets in STATUS_WORKFLOW.items() if not targets)


class InvalidTransitionError(Exception):
    """Raised when a status change is not allowed by the workflow."""

    def __init__(self, from_status: str, to_status: str):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Cannot transition from '{from_status}' to '{to_status}'")


def can_transition(from_status: str, to_status: str) -> bool:
    return to_status in STATUS_WORKFLOW.get(from_status, [])


class InfringementWorkflowService:
    """Applies status transitions to infringements."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def transition(
        self,
        infringement: Infringement,
        to_status: str,
        triggered_by: UUID | None = None,
        reason: str | None = None,
    ) -> StatusTransition:
        """Move an infringement to ``to_status`` and write the audit row.

        Raises:
            InvalidTransitionError: if the workflow does not allow the move
        """
        from_status = infringement.status
        if not can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status)

        infringement.status = to_status
        infringement.updated_at = datetime.utcnow()
        if to_status == "active" and from_status == "pending_verification":
            infringement.verified_by_user_at = datetime.utcnow()

        audit = StatusTransition(
            infringement_id=infringement.id,
            from_status=from_status,
            to_status=to_status,
            triggered_by=triggered_by,
            reason=reason,
        )
        self.db.add(audit)
        await self.db.flush()

        logger.info(f"Infringement {infringement.id}: {from_status} -> {to_status}")
        return audit

    async def transition_if_allowed(
        self,
        infringement: Infringement,
        to_status: str,
        triggered_by: UUID | None = None,
        reason: str | None = None,
    ) -> bool:
        """Apply the transition only when allowed; returns whether it was applied."""
        if not can_transition(infringement.status, to_status):
            return False
        await self.transition(infringement, to_status, triggered_by, reason)
        return True
