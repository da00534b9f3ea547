"""Slot-filling workflow definitions."""

from .criteria import BOOKING_WORKFLOW, SEARCH_WORKFLOW, STATUS_WORKFLOW, workflow_for
from .schema import CriteriaWorkflowDef, SlotDef

__all__ = [
    "BOOKING_WORKFLOW",
    "CriteriaWorkflowDef",
    "SEARCH_WORKFLOW",
    "STATUS_WORKFLOW",
    "SlotDef",
    "workflow_for",
]
