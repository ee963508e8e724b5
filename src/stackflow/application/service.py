import logging
from typing import Any

import msgspec

from stackflow.application.port import ExecutorFactory, OutputStore, ReferenceResolver, StackProvider
from stackflow.domain.entity import (
    CallSelfState,
    Node,
    ParallelPlan,
    ParallelState,
    PassState,
    PassThrough,
    PlanTypes,
    SerialPlan,
    SerialState,
    StackDispatch,
    StackEvent,
    StackRecord,
    StackState,
    State,
    WorkflowEvent,
    WorkflowResult,
)
from stackflow.domain.exception import (
    ConfigurationError,
    StackProviderError,
    TaskFailedError,
    WorkflowInputError,
)
from stackflow.domain.service import branch_of, linearize_branch, stamp_branches, stamp_execution_name
from stackflow.domain.value_object import ExecutionOptions, NodeType

logger = logging.getLogger(__name__)

_NODE_TYPES = {node_type.value for node_type in NodeType}


class OutputRegistrar:
    """Handles registration of stack records into an OutputStore.

    Documents live at ``<executionId>/<stackName>/output.json`` with the body
    ``{"<stackName>": <StackRecord>}``. A later record for the same name overwrites.
    """

    def __init__(self, output_store: OutputStore | None):
        self.output_store = output_store

    @staticmethod
    def key_for(execution_id: str, stack_name: str) -> str:
        return f"{execution_id}/{stack_name}/output.json"

    def ensure_ready(self, execution_id: str | None) -> None:
        """
        Check the preconditions every persisting or reading entry point needs.

        :raises ConfigurationError: If no store is configured or the execution id is empty
        """
        if self.output_store is None or not execution_id:
            raise ConfigurationError("Output store or execution name is undefined.")

    def register(self, execution_id: str, stack_name: str, record: StackRecord) -> None:
        """
        Persist the record of one stack.

        :param execution_id: The execution the stack belongs to
        :type execution_id: str
        :param stack_name: The stack name used as join key
        :type stack_name: str
        :param record: The final describe result
        :type record: StackRecord
        """
        self.ensure_ready(execution_id)
        key = self.key_for(execution_id, stack_name)
        self.output_store.set(key, msgspec.json.encode({stack_name: record.to_document()}))
        logger.info("Stored output of %s at %s", stack_name, key)

    def lookup(self, execution_id: str, stack_name: str) -> dict[str, Any] | None:
        """
        Read back the document a stack persisted, decoded to builtins.

        :returns: The document, or None when absent or unreadable
        :rtype: dict[str, Any] | None
        """
        self.ensure_ready(execution_id)
        key = self.key_for(execution_id, stack_name)
        try:
            return msgspec.json.decode(self.output_store.get(key))
        except KeyError:
            logger.warning("No output stored at %s", key)
        except msgspec.DecodeError as e:
            logger.error("Output at %s is not valid JSON: %s", key, e)
        return None


def _normalize(data: Any) -> Any:
    # A {StartAt, States} mapping without a known Type is a serial branch.
    if isinstance(data, dict):
        if "StartAt" in data and data.get("Type") not in _NODE_TYPES:
            data = {**data, "Type": NodeType.SERIAL.value}
        if data.get("Type") == NodeType.CALL_SELF.value and isinstance(data.get("Data"), dict):
            data = {**data, "Data": _normalize(data["Data"])}
    return data


def load_node(data: Any) -> Node:
    """
    Decodes a workflow node from a Python mapping.

    :param data: The node as a mapping, or an already decoded node
    :type data: Any
    :returns: The decoded node
    :rtype: Node
    :raises WorkflowInputError: If the node is absent or malformed
    """
    if isinstance(data, State):
        return data
    if not data:
        raise WorkflowInputError("Origin input is undefined.")
    try:
        return msgspec.convert(_normalize(data), type=Node)
    except msgspec.ValidationError as e:
        raise WorkflowInputError(f"Invalid workflow node: {e}") from e


def load_event(data: StackEvent | dict) -> StackEvent:
    if isinstance(data, StackEvent):
        return data
    try:
        return msgspec.convert(data, type=StackEvent)
    except msgspec.ValidationError as e:
        raise WorkflowInputError(f"Invalid stack event: {e}") from e


class WorkflowInterpreter:
    """
    Turns one workflow node into the single instruction the driver executes next.

    - ``Stack``: parameters are resolved and the stack request is dispatched.
    - ``Pass``: the embedded stack's current record is committed and the node is returned.
    - ``Serial`` (or a bare branch, or a one-branch ``Parallel``): the branch is flattened
      into an ordered list.
    - ``Parallel`` with two or more branches: the branches are returned for fan-out.

    Nested nodes are never interpreted inline. The driver hands them back wrapped in
    ``CallSelf``, which is unwrapped here.
    """

    def __init__(
        self,
        resolver: ReferenceResolver,
        registrar: OutputRegistrar,
        provider: StackProvider | None = None,
    ):
        self.resolver = resolver
        self.registrar = registrar
        self.provider = provider

    def handle(self, event: WorkflowEvent | dict) -> dict[str, Any]:
        """
        Task entry point: decode the event, interpret it and encode the plan.

        :param event: ``{"ExecutionName": ..., "Input": <node>}``
        :type event: WorkflowEvent | dict
        :returns: The plan as builtins
        :rtype: dict[str, Any]
        """
        if not isinstance(event, WorkflowEvent):
            try:
                event = msgspec.convert(event, type=WorkflowEvent)
            except msgspec.ValidationError as e:
                raise WorkflowInputError(f"Invalid workflow event: {e}") from e
        node = load_node(event.input)
        return msgspec.to_builtins(self.interpret(node, event.execution_name))

    def interpret(self, node: Node, execution_id: str) -> PlanTypes:
        if isinstance(node, CallSelfState):
            node = node.data
        # The root id wins over the id of whichever invocation re-entered us.
        stamp_execution_name(node, execution_id)
        if not node.execution_name:
            raise ConfigurationError("Execution name is undefined.")
        logger.info("Interpreting %s node in execution %s", type(node).__name__, node.execution_name)

        if isinstance(node, StackState):
            return self._dispatch(node)
        if isinstance(node, PassState):
            self._commit(node)
            return PassThrough(data=node)
        if isinstance(node, ParallelState):
            if not node.branches:
                raise WorkflowInputError("Branches is undefined.")
            if len(node.branches) == 1:
                return SerialPlan(data=linearize_branch(node.branches[0], node.execution_name))
            return ParallelPlan(data=stamp_branches(node.branches, node.execution_name))
        if isinstance(node, SerialState):
            return SerialPlan(data=linearize_branch(branch_of(node), node.execution_name))
        raise WorkflowInputError(f"Unsupported node type: {type(node).__name__}")

    def _dispatch(self, node: StackState) -> StackDispatch:
        if node.data is None:
            raise WorkflowInputError("Stack data is undefined.")
        self.registrar.ensure_ready(node.execution_name)
        stack_input = node.data.input
        stack_input.parameters = self.resolver.resolve(stack_input.parameters, node.execution_name)
        node.data.execution_name = node.execution_name
        return StackDispatch(data=node.data)

    def _commit(self, node: PassState) -> None:
        if node.data is None:
            raise WorkflowInputError("Stack data is undefined.")
        self.registrar.ensure_ready(node.execution_name)
        if self.provider is None:
            raise ConfigurationError("Stack provider is undefined.")
        stack_input = node.data.input
        record = self.provider.describe_stack(stack_input.region, stack_input.stack_name)
        if record is None:
            raise StackProviderError("Describe Stack failed.")
        self.registrar.register(node.execution_name, stack_input.stack_name, record)


class StackController:
    """Drives one stack through Create/Update/Upgrade/Delete, Describe polling and Callback.

    Each call performs one transition and returns the next event; it never sleeps.
    """

    def __init__(self, executor_factory: ExecutorFactory):
        self.executor_factory = executor_factory

    def handle(self, event: StackEvent | dict) -> StackEvent:
        event = load_event(event)
        logger.info("Stack %s: %s", event.input.stack_name, event.action.value)
        executor = self.executor_factory.get_executor(event.action)
        return executor.execute(event)


def run_workflow_task(interpreter: WorkflowInterpreter, event: WorkflowEvent | dict) -> dict[str, Any]:
    """
    Invoke the interpreter as a task: any failure becomes a TaskFailedError.

    :param interpreter: The interpreter to invoke
    :type interpreter: WorkflowInterpreter
    :param event: The task input
    :type event: WorkflowEvent | dict
    :returns: The encoded plan
    :rtype: dict[str, Any]
    :raises TaskFailedError: If interpretation fails for any reason
    """
    try:
        return interpreter.handle(event)
    except Exception as e:
        logger.exception("Stack workflow input failed.")
        raise TaskFailedError(f"Stack workflow input failed: {e}") from e


def run_action_task(controller: StackController, event: StackEvent | dict) -> dict[str, Any]:
    """
    Invoke the controller as a task: any failure becomes a TaskFailedError.

    :raises TaskFailedError: If the transition fails for any reason
    """
    try:
        return msgspec.to_builtins(controller.handle(event))
    except Exception as e:
        logger.exception("Stack action failed.")
        raise TaskFailedError(str(e)) from e


class WorkflowClient:
    """
    Encapsulates the output store, registrar, resolver, interpreter, controller and engine.
    Provides a high-level interface for running workflows and reading back their outputs.

    .. note::
        Infrastructure wiring (concrete OutputStore, StackProvider, ExecutorFactory and
        WorkflowEngine) is done by the ``create`` function of each backend and injected here.
    """

    def __init__(
        self,
        output_store: OutputStore,
        provider: StackProvider,
        interpreter: WorkflowInterpreter,
        controller: StackController,
        workflow_engine: Any,
        execution_options: ExecutionOptions | None = None,
    ):
        self.output_store = output_store
        self.provider = provider
        self.registrar = interpreter.registrar
        self.interpreter = interpreter
        self.controller = controller
        self.engine = workflow_engine
        self.execution_options = execution_options if execution_options is not None else ExecutionOptions()

    def run(self, workflow: Any, execution_id: str | None = None) -> WorkflowResult:
        """
        Loads and drives a workflow to completion.

        :param workflow: The root node as a mapping or a decoded node
        :type workflow: Any
        :param execution_id: Optional execution identifier
        :type execution_id: str | None
        :returns: A WorkflowResult
        :rtype: WorkflowResult
        :raises WorkflowInputError: If the workflow cannot be decoded
        """
        node = load_node(workflow)
        return self.engine.run(node, execution_id)
