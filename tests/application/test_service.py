"""
Tests for application services.

This module tests the application layer services including:
- OutputRegistrar
- load_node / load_event
- WorkflowInterpreter
- StackController
- run_workflow_task / run_action_task
- WorkflowClient
"""

from unittest.mock import Mock

import msgspec
import pytest

from stackflow.application.adapter import ParameterResolver
from stackflow.application.port import ActionExecutor, ExecutorFactory, OutputStore, ReferenceResolver, StackProvider
from stackflow.application.service import (
    OutputRegistrar,
    StackController,
    WorkflowClient,
    WorkflowInterpreter,
    load_event,
    load_node,
    run_action_task,
    run_workflow_task,
)
from stackflow.domain.entity import (
    CallSelfState,
    Output,
    Parameter,
    ParallelPlan,
    PassThrough,
    SerialPlan,
    SerialState,
    StackDispatch,
    StackEvent,
    StackInput,
    StackRecord,
    StackState,
)
from stackflow.domain.exception import (
    ConfigurationError,
    StackProviderError,
    TaskFailedError,
    WorkflowInputError,
)
from stackflow.domain.value_object import StackAction
from stackflow.infrastructure.adapter.in_memory.output_store import InMemoryOutputStore


def stack_node(name, **kwargs):
    return {
        "Type": "Stack",
        "Data": {"Input": {"Region": "us-east-1", "StackName": name, "TemplateURL": f"https://t/{name}"}},
        **kwargs,
    }


class TestOutputRegistrar:
    """Test cases for OutputRegistrar."""

    def setup_method(self):
        self.store = InMemoryOutputStore()
        self.registrar = OutputRegistrar(self.store)

    def test_key_for(self):
        assert OutputRegistrar.key_for("E1", "S1") == "E1/S1/output.json"

    def test_register_and_lookup(self):
        record = StackRecord(stack_id="id-1", stack_name="S1", stack_status="CREATE_COMPLETE")

        self.registrar.register("E1", "S1", record)

        assert self.registrar.lookup("E1", "S1") == {
            "S1": {"StackId": "id-1", "StackName": "S1", "StackStatus": "CREATE_COMPLETE"}
        }

    def test_later_record_overwrites(self):
        self.registrar.register("E1", "S1", StackRecord(stack_name="S1", stack_status="CREATE_COMPLETE"))
        self.registrar.register("E1", "S1", StackRecord(stack_name="S1", stack_status="UPDATE_COMPLETE"))

        assert self.registrar.lookup("E1", "S1")["S1"]["StackStatus"] == "UPDATE_COMPLETE"

    def test_lookup_missing(self):
        assert self.registrar.lookup("E1", "S1") is None

    def test_lookup_unreadable(self):
        self.store.set("E1/S1/output.json", b"not json")

        assert self.registrar.lookup("E1", "S1") is None

    def test_not_ready(self):
        with pytest.raises(ConfigurationError, match="Output store or execution name is undefined."):
            OutputRegistrar(None).register("E1", "S1", StackRecord(stack_name="S1"))
        with pytest.raises(ConfigurationError):
            self.registrar.ensure_ready("")


class TestLoadNode:
    """Test cases for load_node and load_event."""

    def test_stack(self):
        node = load_node(stack_node("S1"))

        assert isinstance(node, StackState)

    def test_bare_branch_is_serial(self):
        """Test that a mapping with StartAt but no Type is a serial branch."""
        node = load_node({"StartAt": "A", "States": {"A": stack_node("S1", End=True)}})

        assert isinstance(node, SerialState)
        assert node.start_at == "A"

    def test_unknown_type_branch_is_serial(self):
        """Test that a branch with an unrecognised Type falls back to serial."""
        node = load_node({"Type": "Sequence", "StartAt": "A", "States": {"A": stack_node("S1", End=True)}})

        assert isinstance(node, SerialState)
        assert node.start_at == "A"

    def test_bare_branch_inside_call_self(self):
        node = load_node({"Type": "CallSelf", "Data": {"StartAt": "A", "States": {"A": stack_node("S1")}}})

        assert isinstance(node, CallSelfState)
        assert isinstance(node.data, SerialState)

    def test_decoded_node_passthrough(self):
        node = StackState()

        assert load_node(node) is node

    @pytest.mark.parametrize("data", [None, {}])
    def test_absent(self, data):
        with pytest.raises(WorkflowInputError, match="Origin input is undefined."):
            load_node(data)

    def test_malformed(self):
        with pytest.raises(WorkflowInputError, match="Invalid workflow node"):
            load_node({"Type": "Choice"})

    def test_load_event(self):
        event = load_event({"Action": "Delete", "Input": {"Region": "r", "StackName": "S1"}})

        assert event.action == StackAction.DELETE

    def test_load_event_malformed(self):
        with pytest.raises(WorkflowInputError):
            load_event({"Action": "Explode", "Input": {"Region": "r", "StackName": "S1"}})


class TestWorkflowInterpreter:
    """Test cases for WorkflowInterpreter."""

    def setup_method(self):
        self.store = InMemoryOutputStore()
        self.registrar = OutputRegistrar(self.store)
        self.provider = Mock(spec=StackProvider)
        self.interpreter = WorkflowInterpreter(ParameterResolver(self.registrar), self.registrar, self.provider)

    def test_stack_dispatch_resolves_parameters(self):
        self.registrar.register(
            "E1",
            "S1",
            StackRecord(stack_name="S1", outputs=[Output(output_key="QueueName", output_value="q-123")]),
        )
        node = stack_node("S2")
        node["Data"]["Input"]["Parameters"] = [{"ParameterKey": "Queue.#", "ParameterValue": "#.S1.QueueName"}]

        plan = self.interpreter.interpret(load_node(node), "E1")

        assert isinstance(plan, StackDispatch)
        assert plan.data.execution_name == "E1"
        assert plan.data.input.parameters == [Parameter(parameter_key="Queue", parameter_value="q-123")]

    def test_stack_without_data(self):
        with pytest.raises(WorkflowInputError, match="Stack data is undefined."):
            self.interpreter.interpret(StackState(), "E1")

    def test_node_execution_name_wins(self):
        """Test that an id already carried by the node is kept."""
        plan = self.interpreter.interpret(load_node(stack_node("S1", ExecutionName="ROOT")), "CHILD")

        assert plan.data.execution_name == "ROOT"

    def test_missing_execution_name(self):
        with pytest.raises(ConfigurationError, match="Execution name is undefined."):
            self.interpreter.interpret(load_node(stack_node("S1")), "")

    def test_serial_linearized(self):
        node = load_node(
            {
                "Type": "Serial",
                "StartAt": "A",
                "States": {"B": stack_node("S2", End=True), "A": stack_node("S1", Next="B")},
            }
        )

        plan = self.interpreter.interpret(node, "E1")

        assert isinstance(plan, SerialPlan)
        assert [s.data.input.stack_name for s in plan.data] == ["S1", "S2"]
        assert all(s.execution_name == "E1" for s in plan.data)

    def test_serial_errors(self):
        with pytest.raises(WorkflowInputError):
            self.interpreter.interpret(load_node({"Type": "Serial", "StartAt": "A"}), "E1")
        with pytest.raises(WorkflowInputError, match="not defined"):
            self.interpreter.interpret(
                load_node({"StartAt": "A", "States": {"A": stack_node("S1", Next="Z")}}), "E1"
            )

    def test_single_branch_parallel_equals_serial(self):
        """Test that a one-branch parallel node is interpreted as that branch in serial."""
        branch = {"StartAt": "A", "States": {"A": stack_node("S1", Next="B"), "B": stack_node("S2", End=True)}}

        parallel = self.interpreter.interpret(load_node({"Type": "Parallel", "Branches": [branch]}), "E1")
        serial = self.interpreter.interpret(load_node(branch), "E1")

        assert isinstance(parallel, SerialPlan)
        assert msgspec.to_builtins(parallel) == msgspec.to_builtins(serial)

    def test_parallel_branches_returned(self):
        branches = [
            {"StartAt": "A", "States": {"A": stack_node("S1", End=True)}},
            {"StartAt": "B", "States": {"B": stack_node("S2", End=True)}},
        ]

        plan = self.interpreter.interpret(load_node({"Type": "Parallel", "Branches": branches}), "E1")

        assert isinstance(plan, ParallelPlan)
        assert len(plan.data) == 2
        assert plan.data[1].states["B"].execution_name == "E1"

    @pytest.mark.parametrize("branches", [None, []])
    def test_parallel_without_branches(self, branches):
        node = {"Type": "Parallel"} if branches is None else {"Type": "Parallel", "Branches": branches}

        with pytest.raises(WorkflowInputError, match="Branches is undefined."):
            self.interpreter.interpret(load_node(node), "E1")

    def test_pass_commits_current_record(self):
        record = StackRecord(stack_id="id-1", stack_name="S1", stack_status="UPDATE_COMPLETE")
        self.provider.describe_stack.return_value = record
        node = stack_node("S1")
        node["Type"] = "Pass"

        plan = self.interpreter.interpret(load_node(node), "E1")

        assert isinstance(plan, PassThrough)
        self.provider.describe_stack.assert_called_once_with("us-east-1", "S1")
        assert self.registrar.lookup("E1", "S1")["S1"]["StackStatus"] == "UPDATE_COMPLETE"

    def test_pass_on_missing_stack(self):
        self.provider.describe_stack.return_value = None
        node = stack_node("S1")
        node["Type"] = "Pass"

        with pytest.raises(StackProviderError, match="Describe Stack failed."):
            self.interpreter.interpret(load_node(node), "E1")

    def test_pass_without_provider(self):
        interpreter = WorkflowInterpreter(Mock(spec=ReferenceResolver), self.registrar)
        node = stack_node("S1")
        node["Type"] = "Pass"

        with pytest.raises(ConfigurationError):
            interpreter.interpret(load_node(node), "E1")

    def test_call_self_unwrapped(self):
        node = load_node({"Type": "CallSelf", "Token": "t", "Data": stack_node("S1")})

        plan = self.interpreter.interpret(node, "E1")

        assert isinstance(plan, StackDispatch)

    def test_handle_encodes_plan(self):
        plan = self.interpreter.handle({"ExecutionName": "E1", "Input": stack_node("S1")})

        assert plan["Type"] == "Stack"
        assert plan["Data"]["ExecutionName"] == "E1"
        assert plan["Data"]["Input"]["StackName"] == "S1"

    def test_handle_invalid_event(self):
        with pytest.raises(WorkflowInputError):
            self.interpreter.handle({"ExecutionName": 5})


class TestStackController:
    """Test cases for StackController."""

    def setup_method(self):
        self.executor = Mock(spec=ActionExecutor)
        self.factory = Mock(spec=ExecutorFactory)
        self.factory.get_executor.return_value = self.executor
        self.controller = StackController(self.factory)

    def test_dispatches_by_action(self):
        expected = StackEvent(action=StackAction.END, input=StackInput(region="r", stack_name="S1"))
        self.executor.execute.return_value = expected

        event = self.controller.handle({"Action": "Upgrade", "Input": {"Region": "r", "StackName": "S1"}})

        self.factory.get_executor.assert_called_once_with(StackAction.UPGRADE)
        assert event is expected


class TestTaskBoundary:
    """Test cases for the task boundary wrappers."""

    def test_workflow_task_wraps_errors(self):
        interpreter = WorkflowInterpreter(Mock(spec=ReferenceResolver), OutputRegistrar(InMemoryOutputStore()))

        with pytest.raises(TaskFailedError, match="Origin input is undefined."):
            run_workflow_task(interpreter, {"ExecutionName": "E1", "Input": None})

    def test_action_task_wraps_errors(self):
        factory = Mock(spec=ExecutorFactory)
        factory.get_executor.return_value.execute.side_effect = RuntimeError("boom")

        with pytest.raises(TaskFailedError, match="boom"):
            run_action_task(StackController(factory), {"Action": "Create", "Input": {"Region": "r", "StackName": "S"}})

    def test_action_task_returns_builtins(self):
        factory = Mock(spec=ExecutorFactory)
        factory.get_executor.return_value.execute.side_effect = lambda event: event

        result = run_action_task(StackController(factory), {"Action": "End", "Input": {"Region": "r", "StackName": "S"}})

        assert result == {"Action": "End", "Input": {"Region": "r", "StackName": "S"}}


class TestWorkflowClient:
    """Test cases for WorkflowClient."""

    def test_run_loads_then_delegates(self):
        engine = Mock()
        registrar = OutputRegistrar(Mock(spec=OutputStore))
        interpreter = WorkflowInterpreter(Mock(spec=ReferenceResolver), registrar)
        client = WorkflowClient(
            output_store=registrar.output_store,
            provider=Mock(spec=StackProvider),
            interpreter=interpreter,
            controller=Mock(spec=StackController),
            workflow_engine=engine,
        )

        client.run(stack_node("S1"), "E1")

        node, execution_id = engine.run.call_args.args
        assert isinstance(node, StackState)
        assert execution_id == "E1"
        assert client.registrar is registrar

    def test_run_rejects_malformed(self):
        client = WorkflowClient(
            output_store=Mock(spec=OutputStore),
            provider=Mock(spec=StackProvider),
            interpreter=WorkflowInterpreter(Mock(spec=ReferenceResolver), OutputRegistrar(None)),
            controller=Mock(spec=StackController),
            workflow_engine=Mock(),
        )

        with pytest.raises(WorkflowInputError):
            client.run({})
