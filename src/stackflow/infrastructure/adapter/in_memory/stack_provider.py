import threading
import uuid
from datetime import datetime, timezone

from msgspec import structs

from stackflow.application.port import StackProvider
from stackflow.domain.entity import Output, StackInput, StackRecord
from stackflow.domain.exception import StackProviderError
from stackflow.domain.value_object import StackStatus


class InMemoryStackProvider(StackProvider):
    """Simulates the provisioning API in process.

    Every operation stays in progress for ``polls`` describe calls, then settles.
    Templates listed in ``outputs`` produce those outputs; templates listed in
    ``failing`` settle in the failed variant with their reason.
    """

    def __init__(
        self,
        outputs: dict[str, list[Output]] | None = None,
        failing: dict[str, str] | None = None,
        polls: int = 1,
    ):
        self.outputs = outputs or {}
        self.failing = failing or {}
        self.polls = polls
        self.calls: list[tuple[str, str]] = []
        self._stacks: dict[str, StackRecord] = {}
        self._pending: dict[str, tuple[int, str, str | None]] = {}
        self._templates: dict[str, str] = {}
        self._lock = threading.Lock()

    def create_stack(self, region: str, stack_input: StackInput) -> str:
        with self._lock:
            self.calls.append(("create", stack_input.stack_name))
            existing = self._find(region, stack_input.stack_name)
            if existing is not None:
                raise StackProviderError(f"Stack [{stack_input.stack_name}] already exists", "AlreadyExistsException")
            stack_id = f"arn:stackflow:{region}:stack/{stack_input.stack_name}/{uuid.uuid4().hex}"
            self._stacks[stack_id] = StackRecord(
                stack_id=stack_id,
                stack_name=stack_input.stack_name,
                stack_status=StackStatus.CREATE_IN_PROGRESS.value,
                creation_time=datetime.now(timezone.utc),
                parameters=list(stack_input.parameters),
                tags=stack_input.tags,
                disable_rollback=True,
                enable_termination_protection=False,
            )
            self._templates[stack_id] = stack_input.template_url
            self._settle_later(stack_id, "CREATE", stack_input.template_url)
            return stack_id

    def update_stack(
        self,
        region: str,
        stack_input: StackInput,
        use_previous_template: bool,
        disable_rollback: bool,
    ) -> str:
        with self._lock:
            self.calls.append(("update", stack_input.stack_name))
            record = self._find(region, stack_input.stack_name)
            if record is None:
                raise StackProviderError(f"Stack [{stack_input.stack_name}] does not exist", "ValidationError")
            if not use_previous_template:
                self._templates[record.stack_id] = stack_input.template_url
            self._stacks[record.stack_id] = structs.replace(
                record,
                stack_status=StackStatus.UPDATE_IN_PROGRESS.value,
                last_updated_time=datetime.now(timezone.utc),
                parameters=list(stack_input.parameters),
                disable_rollback=disable_rollback,
            )
            self._settle_later(record.stack_id, "UPDATE", self._templates[record.stack_id])
            return record.stack_id

    def delete_stack(self, region: str, stack_id: str) -> None:
        with self._lock:
            self.calls.append(("delete", stack_id))
            record = self._stacks.get(stack_id)
            if record is None:
                raise StackProviderError(f"Stack [{stack_id}] does not exist", "ValidationError")
            if record.enable_termination_protection:
                raise StackProviderError(f"Stack [{stack_id}] has termination protection enabled", "ValidationError")
            self._stacks[stack_id] = structs.replace(record, stack_status=StackStatus.DELETE_IN_PROGRESS.value)
            self._pending[stack_id] = (self.polls, StackStatus.DELETE_COMPLETE.value, None)

    def describe_stack(self, region: str, stack_name: str) -> StackRecord | None:
        with self._lock:
            self.calls.append(("describe", stack_name))
            record = self._stacks.get(stack_name) or self._find(region, stack_name)
            if record is None:
                return None
            pending = self._pending.get(record.stack_id)
            if pending is not None:
                remaining, status, reason = pending
                if remaining > 0:
                    self._pending[record.stack_id] = (remaining - 1, status, reason)
                else:
                    del self._pending[record.stack_id]
                    outputs = None
                    if status.endswith("_COMPLETE") and status != StackStatus.DELETE_COMPLETE.value:
                        outputs = self.outputs.get(self._templates.get(record.stack_id, ""))
                    record = structs.replace(
                        record,
                        stack_status=status,
                        stack_status_reason=reason,
                        outputs=outputs,
                        deletion_time=(
                            datetime.now(timezone.utc) if status == StackStatus.DELETE_COMPLETE.value else None
                        ),
                    )
                    self._stacks[record.stack_id] = record
            return record

    def set_termination_protection(self, region: str, stack_id: str, enabled: bool) -> None:
        with self._lock:
            self.calls.append(("protect" if enabled else "unprotect", stack_id))
            record = self._stacks.get(stack_id)
            if record is None:
                raise StackProviderError(f"Stack [{stack_id}] does not exist", "ValidationError")
            self._stacks[stack_id] = structs.replace(record, enable_termination_protection=enabled)

    def _find(self, region: str, stack_name: str) -> StackRecord | None:
        # Deleted stacks are only visible by id.
        for record in self._stacks.values():
            if (
                record.stack_name == stack_name
                and f":{region}:" in record.stack_id
                and record.stack_status != StackStatus.DELETE_COMPLETE.value
            ):
                return record
        return None

    def _settle_later(self, stack_id: str, operation: str, template_url: str) -> None:
        if template_url in self.failing:
            self._pending[stack_id] = (self.polls, f"{operation}_FAILED", self.failing[template_url])
        else:
            self._pending[stack_id] = (self.polls, f"{operation}_COMPLETE", None)
