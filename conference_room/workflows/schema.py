"""Pydantic models for slot-filling criteria workflows.

A workflow is an ordered list of slots.  The session always prompts for
the first slot whose criteria field is still empty, so the order of
``slots`` is the prompting order.
"""

from __future__ import annotations

from pydantic import BaseModel


class SlotDef(BaseModel):
    """One required criteria field and how to ask for it."""

    name: str                              # criteria attribute
    kind: str = "text"                     # "text", "office", "start_time" or "end_time"
    state: str                             # CriteriaState while awaiting this slot
    prompt: str                            # Question sent to the user
    not_understood: str = ""               # Notice when the reply can't be used


class CriteriaWorkflowDef(BaseModel):
    """Slot order and exit phrases for one criteria type."""

    id: str
    exit_phrases: list[str] = ["cancel", "stop"]
    slots: list[SlotDef] = []
