import logging
import operator
import re
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

import msgspec
from msgspec import structs

from stackflow.application.port import ActionExecutor, ReferenceResolver, StackProvider
from stackflow.domain.entity import Parameter, StackEvent, StackRecord
from stackflow.domain.exception import ConfigurationError, StackFailedError, StackProviderError
from stackflow.domain.value_object import (
    ExecutionOptions,
    StackAction,
    StackStatus,
    is_failed,
    is_in_progress,
)

if TYPE_CHECKING:
    from stackflow.application.service import OutputRegistrar

logger = logging.getLogger(__name__)

QUERY_KEY_SUFFIX = ".$"
QUERY_VALUE_PREFIX = "$."
SUFFIX_KEY_SUFFIX = ".#"
SUFFIX_VALUE_PREFIX = "#."

ROLLBACK_VALIDATION_CODE = "ValidationError"
ROLLBACK_VALIDATION_MESSAGE = "please use the disable-rollback parameter with update-stack API"


class QueryPath:
    """Evaluates JSONPath expressions such as ``$.a.b[0]['c'][*]`` against decoded JSON documents.

    Rules:
    - ``.name`` and ``['name']`` select a mapping key.
    - ``[n]`` selects a list index; negative indexes count from the end.
    - ``.*`` and ``[*]`` select every child.
    - ``..name`` selects ``name`` at any depth below the current value.
    - ``[?(@.key == 'v')]`` keeps the children whose ``@`` path compares true. The operators are
      ``==``, ``!=``, ``<``, ``<=``, ``>`` and ``>=``; ``[?(@.key)]`` keeps children where the path exists.
    - Paths that do not match yield no values instead of raising.
    """

    _pattern = re.compile(
        r"\[\?\(.*?\)\]|\.\.(?:\*|[^.\[\]]+)|\[\*\]|\[-?\d+\]|\['[^']*'\]|\[\"[^\"]*\"\]|[^.\[\]]+"
    )
    _filter = re.compile(r"^\[\?\(\s*(@[^=!<>]*?)\s*(?:(==|!=|<=|>=|<|>)\s*(.+?))?\s*\)\]$")
    _operators = {
        "==": operator.eq,
        "!=": operator.ne,
        "<": operator.lt,
        "<=": operator.le,
        ">": operator.gt,
        ">=": operator.ge,
    }

    def __init__(self, expression: str):
        self.expression = expression.strip()
        if not self.expression.startswith("$"):
            raise ValueError(f"Query path must start with '$': {expression}")
        self.parts = [self._compile(part) for part in self._pattern.findall(self.expression[1:])]

    @classmethod
    def _compile(cls, part: str) -> Any:
        if not part.startswith("[?"):
            return part
        match = cls._filter.match(part)
        if match is None:
            raise ValueError(f"Unsupported filter expression: {part}")
        subject, op, literal = match.groups()
        return _Filter(QueryPath("$" + subject[1:]), cls._operators.get(op), _parse_literal(literal))

    def find(self, document: Any) -> list[Any]:
        current = [document]
        for part in self.parts:
            matches = []
            for value in current:
                matches.extend(self._step(value, part))
            current = matches
            if not current:
                break
        return current

    @classmethod
    def _step(cls, value: Any, part: Any) -> list[Any]:
        if isinstance(part, _Filter):
            return [child for child in _children(value) if part.accepts(child)]
        if part in ("*", "[*]"):
            return _children(value)
        if part.startswith(".."):
            return cls._descend(value, part[2:])
        if part.startswith("[") and part[1] in "'\"":
            part = part[2:-2]
        elif part.startswith("["):
            if not isinstance(value, list):
                return []
            idx = int(part[1:-1])
            try:
                return [value[idx]]
            except IndexError:
                return []
        if isinstance(value, dict) and part in value:
            return [value[part]]
        return []

    @classmethod
    def _descend(cls, value: Any, name: str) -> list[Any]:
        matches = cls._step(value, name)
        for child in _children(value):
            matches.extend(cls._descend(child, name))
        return matches


class _Filter:
    def __init__(self, subject: QueryPath, compare: Any, literal: Any):
        self.subject = subject
        self.compare = compare
        self.literal = literal

    def accepts(self, value: Any) -> bool:
        found = self.subject.find(value)
        if self.compare is None:
            return bool(found)
        for candidate in found:
            try:
                if self.compare(candidate, self.literal):
                    return True
            except TypeError:
                continue
        return False


def _children(value: Any) -> list[Any]:
    if isinstance(value, dict):
        return list(value.values())
    if isinstance(value, list):
        return list(value)
    return []


def _parse_literal(text: str | None) -> Any:
    if text is None:
        return None
    if len(text) >= 2 and text[0] == text[-1] and text[0] in "'\"":
        return text[1:-1]
    if text in ("true", "false", "null"):
        return {"true": True, "false": False, "null": None}[text]
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return float(text)
    except ValueError:
        raise ValueError(f"Unsupported filter literal: {text}") from None


class ParameterResolver(ReferenceResolver):
    """Materialises ``.$`` (query path) and ``.#`` (output key suffix) parameter references.

    References read the producing stack's persisted output document under the same execution.
    A reference that cannot be resolved becomes an empty string and is logged as a miss.
    """

    def __init__(self, registrar: "OutputRegistrar"):
        self.registrar = registrar

    def resolve(self, parameters: list[Parameter], execution_id: str) -> list[Parameter]:
        resolved = []
        for param in parameters:
            key, value = param.parameter_key, param.parameter_value
            if key.endswith(QUERY_KEY_SUFFIX) and value.startswith(QUERY_VALUE_PREFIX):
                key, value = key[: -len(QUERY_KEY_SUFFIX)], self._by_query_path(key, value, execution_id)
            elif key.endswith(SUFFIX_KEY_SUFFIX) and value.startswith(SUFFIX_VALUE_PREFIX):
                key, value = key[: -len(SUFFIX_KEY_SUFFIX)], self._by_output_suffix(key, value, execution_id)
            resolved.append(structs.replace(param, parameter_key=key, parameter_value=value))
        return resolved

    def _by_query_path(self, key: str, reference: str, execution_id: str) -> str:
        stack_name = reference.split(".")[1]
        document = self.registrar.lookup(execution_id, stack_name)
        if document is not None:
            try:
                matches = QueryPath(reference).find(document)
            except ValueError:
                matches = []
            if matches:
                return self._literal(matches[0])
        self._miss(key, reference, stack_name, execution_id)
        return ""

    def _by_output_suffix(self, key: str, reference: str, execution_id: str) -> str:
        tokens = reference.split(".", 2)
        stack_name = tokens[1]
        suffix = tokens[2] if len(tokens) > 2 else ""
        document = self.registrar.lookup(execution_id, stack_name)
        outputs = None
        if isinstance(document, dict) and isinstance(document.get(stack_name), dict):
            outputs = document[stack_name].get("Outputs")
        if suffix and outputs:
            for output in outputs:
                if str(output.get("OutputKey", "")).endswith(suffix):
                    return self._literal(output.get("OutputValue"))
        self._miss(key, reference, stack_name, execution_id)
        return ""

    @staticmethod
    def _literal(value: Any) -> str:
        if value is None:
            return ""
        if isinstance(value, str):
            return value
        if isinstance(value, (dict, list, bool)):
            return msgspec.json.encode(value).decode()
        return str(value)

    @staticmethod
    def _miss(key: str, reference: str, stack_name: str, execution_id: str) -> None:
        logger.warning(
            "Unresolved parameter reference %s=%s (stack %s, execution %s); using empty string",
            key,
            reference,
            stack_name,
            execution_id,
        )


def _target(event: StackEvent) -> str:
    """Describe and delete by stack id once one is known, else by name."""
    if event.result is not None and event.result.stack_id:
        return event.result.stack_id
    return event.input.stack_name


def _seeded(event: StackEvent, stack_id: str, status: StackStatus) -> StackRecord:
    return StackRecord(
        stack_id=stack_id,
        stack_name=event.input.stack_name,
        stack_status=status.value,
        creation_time=datetime.now(timezone.utc),
    )


class CreateExecutor(ActionExecutor):
    """Issues the create call and hands over to polling."""

    def __init__(self, provider: StackProvider, execution_options: ExecutionOptions):
        self.provider = provider
        self.execution_options = execution_options

    def execute(self, event: StackEvent) -> StackEvent:
        stack_id = self.provider.create_stack(event.input.region, event.input)
        return StackEvent(
            action=StackAction.DESCRIBE,
            input=event.input,
            execution_name=event.execution_name,
            result=_seeded(event, stack_id, StackStatus.CREATE_IN_PROGRESS),
            retry_after=self.execution_options.describe_interval,
        )


class UpdateExecutor(ActionExecutor):
    """Issues an update call; ``Upgrade`` replaces the template, ``Update`` keeps the previous one.

    The provider refuses some updates unless rollback is disabled. That one rejection is retried
    exactly once with rollback disabled; every other failure propagates.
    """

    def __init__(self, provider: StackProvider, execution_options: ExecutionOptions, use_previous_template: bool = True):
        self.provider = provider
        self.execution_options = execution_options
        self.use_previous_template = use_previous_template

    def execute(self, event: StackEvent) -> StackEvent:
        stack_id = self._update(event)
        return StackEvent(
            action=StackAction.DESCRIBE,
            input=event.input,
            execution_name=event.execution_name,
            result=_seeded(event, stack_id, StackStatus.UPDATE_IN_PROGRESS),
            retry_after=self.execution_options.describe_interval,
        )

    def _update(self, event: StackEvent) -> str:
        region = event.input.region
        try:
            return self.provider.update_stack(region, event.input, self.use_previous_template, False)
        except StackProviderError as e:
            if not is_rollback_rejection(e):
                raise
            logger.warning("Update of %s requires rollback disabled, retrying once", event.input.stack_name)
        return self.provider.update_stack(region, event.input, self.use_previous_template, True)


def is_rollback_rejection(error: StackProviderError) -> bool:
    return error.code == ROLLBACK_VALIDATION_CODE and ROLLBACK_VALIDATION_MESSAGE in error.message


class DeleteExecutor(ActionExecutor):
    """Deletes a stack; a stack that is gone or already deleted ends immediately."""

    def __init__(self, provider: StackProvider, execution_options: ExecutionOptions):
        self.provider = provider
        self.execution_options = execution_options

    def execute(self, event: StackEvent) -> StackEvent:
        region = event.input.region
        current = self.provider.describe_stack(region, _target(event))
        if current is None or current.stack_status == StackStatus.DELETE_COMPLETE.value:
            logger.info("Stack %s does not exist, nothing to delete", event.input.stack_name)
            return StackEvent(action=StackAction.END, input=event.input, execution_name=event.execution_name)

        stack_id = current.stack_id or event.input.stack_name
        self.provider.set_termination_protection(region, stack_id, False)
        self.provider.delete_stack(region, stack_id)
        return StackEvent(
            action=StackAction.DESCRIBE,
            input=event.input,
            execution_name=event.execution_name,
            result=_seeded(event, stack_id, StackStatus.DELETE_IN_PROGRESS),
            retry_after=self.execution_options.describe_interval,
        )


class DescribeExecutor(ActionExecutor):
    """Observes the stack status. No side effects besides the describe call."""

    def __init__(self, provider: StackProvider, execution_options: ExecutionOptions):
        self.provider = provider
        self.execution_options = execution_options

    def execute(self, event: StackEvent) -> StackEvent:
        record = self.provider.describe_stack(event.input.region, _target(event))
        if record is None:
            raise StackProviderError("Describe Stack failed.")
        if is_in_progress(record.stack_status):
            return StackEvent(
                action=StackAction.DESCRIBE,
                input=event.input,
                execution_name=event.execution_name,
                result=record,
                retry_after=self.execution_options.describe_interval,
            )
        return StackEvent(
            action=StackAction.CALLBACK,
            input=event.input,
            execution_name=event.execution_name,
            result=record,
        )


class CallbackExecutor(ActionExecutor):
    """Persists the terminal record, then fails if the status is a failed one."""

    def __init__(self, registrar: "OutputRegistrar"):
        self.registrar = registrar

    def execute(self, event: StackEvent) -> StackEvent:
        self.registrar.ensure_ready(event.execution_name)
        if event.result is None:
            raise ConfigurationError("Stack result is undefined.")
        self.registrar.register(event.execution_name, event.input.stack_name, event.result)
        if is_failed(event.result.stack_status):
            logger.error(
                "Stack %s finished with %s: %s",
                event.input.stack_name,
                event.result.stack_status,
                event.result.stack_status_reason,
            )
            raise StackFailedError(event.input.stack_name, event.result.stack_status_reason)
        return StackEvent(
            action=StackAction.END,
            input=event.input,
            execution_name=event.execution_name,
            result=event.result,
        )


class EndExecutor(ActionExecutor):
    def execute(self, event: StackEvent) -> StackEvent:
        return event
