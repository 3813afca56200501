from types import SimpleNamespace

import pytest

from stockflow.core.exceptions import InvalidState
from stockflow.services.po_state_machine import (
    ApprovalStatus,
    POStatus,
    can_receive_goods,
    can_transition,
    is_terminal,
    receipt_status,
    transition_po,
    validate_transition,
)


def purchase_order(status, approval_status=ApprovalStatus.PENDING):
    return SimpleNamespace(
        status=status,
        approval_status=approval_status,
        approved_by=None,
        approved_at=None,
        sent_to_vendor_at=None,
        vendor_acknowledged_at=None,
        received_at=None,
        closed_at=None,
    )


def test_approval_stamps_approver():
    po = purchase_order(POStatus.PENDING_APPROVAL)
    transition_po(po, POStatus.APPROVED, "manager")
    assert po.status == POStatus.APPROVED
    assert po.approved_by == "manager"
    assert po.approved_at is not None
    assert po.approval_status == ApprovalStatus.APPROVED


def test_auto_approval_keeps_its_marker():
    po = purchase_order(POStatus.DRAFT, ApprovalStatus.AUTO_APPROVED)
    transition_po(po, POStatus.APPROVED)
    assert po.approval_status == ApprovalStatus.AUTO_APPROVED


def test_rejection_returns_to_draft():
    po = purchase_order(POStatus.PENDING_APPROVAL)
    transition_po(po, POStatus.DRAFT)
    assert po.approval_status == ApprovalStatus.REJECTED


def test_receipt_stamps_received_at():
    po = purchase_order(POStatus.SENT_TO_VENDOR)
    transition_po(po, POStatus.FULLY_RECEIVED)
    assert po.received_at is not None


@pytest.mark.parametrize("current,new", [
    (POStatus.DRAFT, POStatus.FULLY_RECEIVED),
    (POStatus.FULLY_RECEIVED, POStatus.APPROVED),
    (POStatus.APPROVED, POStatus.DRAFT),
])
def test_disallowed_transitions(current, new):
    assert not can_transition(current, new)
    with pytest.raises(InvalidState):
        validate_transition(current, new)


def test_terminal_states_reject_everything():
    for status in (POStatus.CLOSED, POStatus.CANCELLED):
        assert is_terminal(status)
        with pytest.raises(InvalidState) as excinfo:
            validate_transition(status, POStatus.APPROVED)
        assert "terminal" in excinfo.value.message


def test_repeated_partial_receipts_are_allowed():
    validate_transition(POStatus.PARTIALLY_RECEIVED, POStatus.PARTIALLY_RECEIVED)


def test_receivable_statuses():
    assert can_receive_goods(POStatus.APPROVED)
    assert can_receive_goods(POStatus.PARTIALLY_RECEIVED)
    assert not can_receive_goods(POStatus.DRAFT)
    assert not can_receive_goods(POStatus.FULLY_RECEIVED)


def test_receipt_status():
    done = SimpleNamespace(quantity_ordered=5, quantity_received=5)
    short = SimpleNamespace(quantity_ordered=5, quantity_received=2)
    assert receipt_status([done, done]) == POStatus.FULLY_RECEIVED
    assert receipt_status([done, short]) == POStatus.PARTIALLY_RECEIVED
