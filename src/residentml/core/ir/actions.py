"""
Action and event binding types.

Event tags (OnClick, OnChange, OnMount, OnInterval) compile to
``EventBinding`` values whose bodies are lists of ``ActionStep``. Bindings are
plain data interpreted by the action executor, so they can be replayed and
tested without a DOM.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class ActionKind(StrEnum):
    """The fixed action vocabulary."""

    # Scalar
    SET = "Set"
    INCREMENT = "Increment"
    DECREMENT = "Decrement"
    TOGGLE = "Toggle"
    RESET = "Reset"
    CYCLE = "Cycle"
    APPEND = "Append"
    PREPEND = "Prepend"

    # Array
    PUSH = "Push"
    POP = "Pop"
    REMOVE_AT = "RemoveAt"
    ARRAY_AT = "ArrayAt"

    # Object
    OBJECT_SET = "ObjectSet"
    MERGE = "Merge"
    CLONE = "Clone"
    EXTRACT = "Extract"

    # Collection
    FILTER = "Filter"
    SORT = "Sort"
    TRANSFORM = "Transform"
    FIND = "Find"
    SUM = "Sum"
    COUNT = "Count"
    GET = "Get"

    # Effects
    SHOW_TOAST = "ShowToast"


class EventKind(StrEnum):
    """Events an author can bind actions to."""

    CLICK = "click"
    CHANGE = "change"
    MOUNT = "mount"
    INTERVAL = "interval"
    SEQUENCE_STEP = "sequenceStep"


EVENT_TAGS: dict[str, EventKind] = {
    "OnClick": EventKind.CLICK,
    "OnChange": EventKind.CHANGE,
    "OnMount": EventKind.MOUNT,
    "OnInterval": EventKind.INTERVAL,
}


class ActionInvocation(BaseModel):
    """
    A single action.

    Example:
        ActionInvocation(kind=ActionKind.INCREMENT, target_var="counter", params={"by": "2"})
    """

    step: Literal["action"] = "action"
    kind: ActionKind
    target_var: str | None = Field(default=None, description="Variable the action writes")
    params: dict[str, str] = Field(default_factory=dict, description="Raw attribute values")
    entries: list[dict[str, str]] = Field(
        default_factory=list,
        description="Child entries (Extract/Property pairs)",
    )

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        target = f" {self.target_var}" if self.target_var else ""
        return f"{self.kind}{target}"


class ConditionalBranch(BaseModel):
    """One If/ElseIf/Else arm. ``condition`` is None for Else."""

    condition: dict[str, str] | None = None
    actions: list[ActionStep] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)


class ConditionalActions(BaseModel):
    """If/ElseIf/Else chain inside an event body; first true arm runs."""

    step: Literal["conditional"] = "conditional"
    branches: list[ConditionalBranch] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)


class SwitchCase(BaseModel):
    """One Case arm. ``value`` is None for Default."""

    value: str | None = None
    actions: list[ActionStep] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)


class SwitchActions(BaseModel):
    """Switch/Case/Default inside an event body; first matching Case, else Default."""

    step: Literal["switch"] = "switch"
    value: str = Field(description="Expression evaluated once")
    cases: list[SwitchCase] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)


class SequenceStep(BaseModel):
    """Actions run after waiting ``delay_ms``."""

    delay_ms: int = 0
    actions: list[ActionStep] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)


class SequenceActions(BaseModel):
    """Delay-separated steps; each step resumes after a timer boundary."""

    step: Literal["sequence"] = "sequence"
    steps: list[SequenceStep] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)

    @property
    def total_delay_ms(self) -> int:
        return sum(s.delay_ms for s in self.steps)


ActionStep = ActionInvocation | ConditionalActions | SwitchActions | SequenceActions

ConditionalBranch.model_rebuild()
ConditionalActions.model_rebuild()
SwitchCase.model_rebuild()
SwitchActions.model_rebuild()
SequenceStep.model_rebuild()
SequenceActions.model_rebuild()


class EventBinding(BaseModel):
    """
    Actions bound to an event.

    Attributes:
        id: Stable id within the owning island (``<island-id>/b<n>``)
        event_kind: What fires the binding
        interval_ms: Period for interval bindings
        actions: Ordered action steps
    """

    id: str
    event_kind: EventKind
    interval_ms: int | None = None
    actions: list[ActionStep] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)


EventBinding.model_rebuild()
