from datetime import datetime
from typing import Any, Union

import msgspec
from msgspec import structs

from stackflow.domain.value_object import StackAction, WorkflowResultStatus


class Parameter(msgspec.Struct, rename="pascal", omit_defaults=True):
    """A stack parameter. Keys ending in ``.$`` or ``.#`` carry a deferred reference."""

    parameter_key: str
    parameter_value: str = ""
    use_previous_value: bool | None = None
    resolved_value: str | None = None


class Tag(msgspec.Struct, rename="pascal"):
    key: str
    value: str


class Output(msgspec.Struct, rename="pascal", omit_defaults=True):
    output_key: str
    output_value: str = ""
    description: str | None = None
    export_name: str | None = None


class StackInput(msgspec.Struct, rename="pascal", kw_only=True, omit_defaults=True):
    """Describes one stack operation: where, which stack, which template and with what parameters."""

    region: str
    stack_name: str
    action: StackAction = StackAction.CREATE
    template_url: str = msgspec.field(default="", name="TemplateURL")
    parameters: list[Parameter] = msgspec.field(default_factory=list)
    tags: list[Tag] | None = None


class StackData(msgspec.Struct, rename="pascal", kw_only=True, omit_defaults=True):
    input: StackInput
    execution_name: str = ""


class StackRecord(msgspec.Struct, rename="pascal", kw_only=True, omit_defaults=True):
    """The describe result of one stack, as persisted to the output store.

    Describe fields without a typed attribute (``RoleARN``, ``Capabilities``, ``RootId``...)
    ride along in ``attributes`` and are merged back by :meth:`to_document`.
    """

    stack_id: str | None = None
    stack_name: str
    stack_status: str | None = None
    stack_status_reason: str | None = None
    creation_time: datetime | None = None
    last_updated_time: datetime | None = None
    deletion_time: datetime | None = None
    description: str | None = None
    parameters: list[Parameter] | None = None
    outputs: list[Output] | None = None
    tags: list[Tag] | None = None
    disable_rollback: bool | None = None
    enable_termination_protection: bool | None = None
    attributes: dict[str, Any] = msgspec.field(default_factory=dict)

    @classmethod
    def from_describe(cls, stack: dict[str, Any]) -> "StackRecord":
        """
        Build a record from one entry of a describe response, keeping every field.

        :param stack: The stack mapping as returned by the provider API
        :type stack: dict[str, Any]
        :return: The typed record
        :rtype: StackRecord
        """
        typed = {field.encode_name for field in structs.fields(cls)}
        record = msgspec.convert({k: v for k, v in stack.items() if k in typed}, type=cls)
        record.attributes = msgspec.to_builtins({k: v for k, v in stack.items() if k not in typed})
        return record

    def to_document(self) -> dict[str, Any]:
        """Return the full describe payload as JSON builtins."""
        document = msgspec.to_builtins(self)
        document.pop("Attributes", None)
        return {**self.attributes, **document}


class State(msgspec.Struct, tag_field="Type", rename="pascal", kw_only=True, omit_defaults=True):
    """Base class for workflow nodes. ``Type`` selects the variant."""

    execution_name: str = ""
    next: str | None = None
    end: bool = False


class StackState(State, kw_only=True, tag="Stack"):
    data: StackData | None = None


class PassState(State, kw_only=True, tag="Pass"):
    data: StackData | None = None


class SerialState(State, kw_only=True, tag="Serial"):
    start_at: str | None = None
    states: dict[str, "WorkflowState"] | None = None


class Branch(msgspec.Struct, rename="pascal", kw_only=True):
    """A named linked path: ``StartAt`` plus the states it walks through via ``Next``."""

    start_at: str
    states: dict[str, "WorkflowState"]


class ParallelState(State, kw_only=True, tag="Parallel"):
    branches: list[Branch] | None = None


class CallSelfState(State, kw_only=True, tag="CallSelf"):
    """Wraps a node handed back to the interpreter as a fresh top-level invocation."""

    data: "WorkflowState"
    token: str | None = None


WorkflowState = Union[StackState, PassState, SerialState, ParallelState]
Node = Union[StackState, PassState, SerialState, ParallelState, CallSelfState]


class Plan(msgspec.Struct, tag_field="Type", rename="pascal", kw_only=True):
    """Base class for what the interpreter tells the driver to do next."""


class StackDispatch(Plan, kw_only=True, tag="Stack"):
    data: StackData


class PassThrough(Plan, kw_only=True, tag="Pass"):
    data: PassState


class SerialPlan(Plan, kw_only=True, tag="Serial"):
    data: list[WorkflowState]


class ParallelPlan(Plan, kw_only=True, tag="Parallel"):
    data: list[Branch]


PlanTypes = Union[StackDispatch, PassThrough, SerialPlan, ParallelPlan]


class WorkflowEvent(msgspec.Struct, rename="pascal", kw_only=True):
    """Interpreter task input."""

    input: Any
    execution_name: str = ""


class StackEvent(msgspec.Struct, rename="pascal", kw_only=True, omit_defaults=True):
    """Controller task input and output.

    ``RetryAfter`` set on a returned event means the caller must wait that many seconds and
    invoke the controller again with the event. ``Action == "End"`` means the stack is done.
    """

    action: StackAction
    input: StackInput
    execution_name: str = ""
    result: StackRecord | None = None
    retry_after: int | None = None

    @property
    def is_done(self) -> bool:
        return self.action == StackAction.END

    @property
    def is_waiting(self) -> bool:
        return self.retry_after is not None


class WorkflowResult(msgspec.Struct):
    """Result of driving a workflow to completion, including every stack record produced."""

    id: str
    status: WorkflowResultStatus
    results: list[StackRecord]
    error: str | None = None

    def to_dict(self):
        """Convert the WorkflowResult to a dictionary."""
        return msgspec.to_builtins(self)

    def to_json(self) -> str:
        """Convert the WorkflowResult to a JSON string."""
        return msgspec.json.encode(self).decode()
