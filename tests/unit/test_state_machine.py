# tests/unit/test_state_machine.py
from __future__ import annotations

from types import SimpleNamespace

import pytest

from wmsledger.models.enums import (
    AdjustmentStatus,
    CycleCountStatus,
    GrnStatus,
    IbtStatus,
    PutawayStatus,
)
from wmsledger.services.errors import InvalidTransition
from wmsledger.services.receiving_service import receipt_status
from wmsledger.services.state_machine import (
    ADJUSTMENT_TRANSITIONS,
    CYCLE_COUNT_TRANSITIONS,
    GRN_TRANSITIONS,
    IBT_TRANSITIONS,
    PUTAWAY_TRANSITIONS,
    can_transition,
    require_status,
)


@pytest.mark.parametrize(
    "table, current, target, ok",
    [
        (GRN_TRANSITIONS, GrnStatus.DRAFT, GrnStatus.OPEN, True),
        (GRN_TRANSITIONS, GrnStatus.OPEN, GrnStatus.PARTIAL, True),
        (GRN_TRANSITIONS, GrnStatus.PARTIAL, GrnStatus.COMPLETE, True),
        (GRN_TRANSITIONS, GrnStatus.COMPLETE, GrnStatus.OPEN, False),
        (GRN_TRANSITIONS, GrnStatus.DRAFT, GrnStatus.RECEIVED, False),
        (PUTAWAY_TRANSITIONS, PutawayStatus.PENDING, PutawayStatus.COMPLETE, True),
        (PUTAWAY_TRANSITIONS, PutawayStatus.COMPLETE, PutawayStatus.CANCELLED, False),
        (IBT_TRANSITIONS, IbtStatus.APPROVED, IbtStatus.IN_TRANSIT, True),
        (IBT_TRANSITIONS, IbtStatus.IN_TRANSIT, IbtStatus.CANCELLED, False),
        (IBT_TRANSITIONS, IbtStatus.DRAFT, IbtStatus.APPROVED, False),
        (CYCLE_COUNT_TRANSITIONS, CycleCountStatus.OPEN, CycleCountStatus.CLOSED, False),
        (CYCLE_COUNT_TRANSITIONS, CycleCountStatus.PENDING_APPROVAL, CycleCountStatus.CLOSED, True),
        (CYCLE_COUNT_TRANSITIONS, CycleCountStatus.PENDING_APPROVAL, CycleCountStatus.IN_PROGRESS, True),
        (CYCLE_COUNT_TRANSITIONS, CycleCountStatus.PENDING_APPROVAL, CycleCountStatus.CANCELLED, True),
        (CYCLE_COUNT_TRANSITIONS, CycleCountStatus.CLOSED, CycleCountStatus.IN_PROGRESS, False),
        (ADJUSTMENT_TRANSITIONS, AdjustmentStatus.SUBMITTED, AdjustmentStatus.REJECTED, True),
        (ADJUSTMENT_TRANSITIONS, AdjustmentStatus.DRAFT, AdjustmentStatus.POSTED, False),
    ],
)
def test_transition_tables(table, current, target, ok):
    assert can_transition(table, current, target) is ok


def test_terminal_states_have_no_exits():
    for table, terminal in (
        (GRN_TRANSITIONS, (GrnStatus.COMPLETE, GrnStatus.CANCELLED)),
        (IBT_TRANSITIONS, (IbtStatus.RECEIVED, IbtStatus.CANCELLED)),
        (ADJUSTMENT_TRANSITIONS, (AdjustmentStatus.POSTED, AdjustmentStatus.REJECTED)),
    ):
        for status in terminal:
            assert not table[status]


def test_require_status_raises_with_context():
    header = SimpleNamespace(id=7, status=str(GrnStatus.COMPLETE))
    with pytest.raises(InvalidTransition) as ei:
        require_status(header, "grn", "receive_line", GrnStatus.OPEN, GrnStatus.PARTIAL)
    assert ei.value.context["status"] == "COMPLETE"
    assert ei.value.context["allowed"] == ["OPEN", "PARTIAL"]


def _line(expected: int, received: int):
    return SimpleNamespace(
        qty_expected=expected, qty_received=received, is_short=received < expected
    )


def test_receipt_status():
    assert receipt_status([_line(10, 0), _line(5, 0)]) == GrnStatus.OPEN
    assert receipt_status([_line(10, 4), _line(5, 0)]) == GrnStatus.PARTIAL
    assert receipt_status([_line(10, 10), _line(5, 6)]) == GrnStatus.RECEIVED
