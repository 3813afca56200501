"""
Purchase order lifecycle.

Every PO status change goes through transition_po so automated
procurement, approvals and goods receipt share one set of rules.
"""
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from stockflow.core.exceptions import InvalidState


class POStatus:
    """PO status constants."""
    DRAFT = "DRAFT"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    SENT_TO_VENDOR = "SENT_TO_VENDOR"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    PARTIALLY_RECEIVED = "PARTIALLY_RECEIVED"
    FULLY_RECEIVED = "FULLY_RECEIVED"
    CLOSED = "CLOSED"
    CANCELLED = "CANCELLED"

    @classmethod
    def all(cls) -> List[str]:
        return [
            cls.DRAFT, cls.PENDING_APPROVAL, cls.APPROVED,
            cls.SENT_TO_VENDOR, cls.ACKNOWLEDGED,
            cls.PARTIALLY_RECEIVED, cls.FULLY_RECEIVED,
            cls.CLOSED, cls.CANCELLED
        ]


class ApprovalStatus:
    PENDING = "pending"
    AUTO_APPROVED = "auto_approved"
    APPROVED = "approved"
    REJECTED = "rejected"


# current_status -> allowed next statuses
PO_TRANSITIONS: Dict[str, List[str]] = {
    POStatus.DRAFT: [
        POStatus.PENDING_APPROVAL,
        POStatus.APPROVED,
        POStatus.CANCELLED,
    ],
    POStatus.PENDING_APPROVAL: [
        POStatus.APPROVED,
        POStatus.DRAFT,             # Rejected, back to draft
        POStatus.CANCELLED,
    ],
    POStatus.APPROVED: [
        POStatus.SENT_TO_VENDOR,
        POStatus.PARTIALLY_RECEIVED,
        POStatus.FULLY_RECEIVED,
        POStatus.CANCELLED,
    ],
    POStatus.SENT_TO_VENDOR: [
        POStatus.ACKNOWLEDGED,
        POStatus.PARTIALLY_RECEIVED,
        POStatus.FULLY_RECEIVED,
        POStatus.CANCELLED,
    ],
    POStatus.ACKNOWLEDGED: [
        POStatus.PARTIALLY_RECEIVED,
        POStatus.FULLY_RECEIVED,
        POStatus.CANCELLED,
    ],
    POStatus.PARTIALLY_RECEIVED: [
        POStatus.PARTIALLY_RECEIVED,
        POStatus.FULLY_RECEIVED,
        POStatus.CLOSED,            # Close short
    ],
    POStatus.FULLY_RECEIVED: [
        POStatus.CLOSED,
    ],
    POStatus.CLOSED: [],
    POStatus.CANCELLED: [],
}


def can_transition(current_status: str, new_status: str) -> bool:
    return new_status in PO_TRANSITIONS.get(current_status, [])


def get_allowed_transitions(current_status: str) -> List[str]:
    return PO_TRANSITIONS.get(current_status, [])


def validate_transition(current_status: str, new_status: str) -> None:
    """Raise InvalidState unless current_status may move to new_status."""
    if current_status == new_status and current_status != POStatus.PARTIALLY_RECEIVED:
        return

    if not can_transition(current_status, new_status):
        allowed = get_allowed_transitions(current_status)
        if not allowed:
            raise InvalidState(
                f"PO in '{current_status}' status cannot be modified. This is a terminal state.",
                details={"status": current_status},
            )
        raise InvalidState(
            f"Cannot change PO from '{current_status}' to '{new_status}'. "
            f"Allowed transitions: {', '.join(allowed)}",
            details={"status": current_status, "requested": new_status, "allowed": allowed},
        )


def can_receive_goods(status: str) -> bool:
    """Can goods be received against this PO?"""
    return status in [
        POStatus.APPROVED,
        POStatus.SENT_TO_VENDOR,
        POStatus.ACKNOWLEDGED,
        POStatus.PARTIALLY_RECEIVED,
    ]


def is_terminal(status: str) -> bool:
    return status in [POStatus.CLOSED, POStatus.CANCELLED]


def receipt_status(items: Iterable) -> str:
    """PARTIALLY_RECEIVED until every line's ordered quantity has arrived."""
    if all(item.quantity_received >= item.quantity_ordered for item in items):
        return POStatus.FULLY_RECEIVED
    return POStatus.PARTIALLY_RECEIVED


def transition_po(po, new_status: str, user_id: Optional[str] = None) -> None:
    """
    Move a PO to new_status and stamp the matching audit field.

    Raises:
        InvalidState: If the transition is not allowed
    """
    validate_transition(po.status, new_status)
    po.status = new_status

    now = datetime.now(timezone.utc)

    if new_status == POStatus.APPROVED:
        po.approved_by = user_id
        po.approved_at = now
        if po.approval_status == ApprovalStatus.PENDING:
            po.approval_status = ApprovalStatus.APPROVED

    elif new_status == POStatus.DRAFT:
        po.approval_status = ApprovalStatus.REJECTED

    elif new_status == POStatus.SENT_TO_VENDOR:
        po.sent_to_vendor_at = now

    elif new_status == POStatus.ACKNOWLEDGED:
        po.vendor_acknowledged_at = now

    elif new_status == POStatus.FULLY_RECEIVED:
        po.received_at = now

    elif new_status == POStatus.CLOSED:
        po.closed_at = now
