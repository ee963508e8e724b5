import concurrent.futures
import logging
import time
import uuid
from collections.abc import Callable
from typing import Any

import msgspec

from stackflow.application.port import WorkflowEngine
from stackflow.application.service import (
    StackController,
    WorkflowInterpreter,
    load_event,
    run_action_task,
    run_workflow_task,
)
from stackflow.domain.entity import (
    CallSelfState,
    ParallelPlan,
    PlanTypes,
    SerialPlan,
    SerialState,
    StackData,
    StackDispatch,
    StackRecord,
    WorkflowResult,
)
from stackflow.domain.exception import StackflowError, StackTimeoutError, TaskFailedError, WorkflowInputError
from stackflow.domain.value_object import ExecutionOptions, WorkflowResultStatus

logger = logging.getLogger(__name__)


class UUIDGenerator:
    """Generates unique identifiers using UUID."""

    def generate(self) -> str:
        """
        Generate a unique identifier.

        :returns: A unique identifier string
        :rtype: str
        """
        return uuid.uuid4().hex


class InMemoryWorkflowEngine(WorkflowEngine):
    """Plays the driver role in process.

    The interpreter and the controller are invoked through their task boundaries, exactly as an
    external step engine would invoke them:

    - ``Stack`` plans run the action loop: execute the action, wait ``RetryAfter`` seconds and
      describe again while the stack is in progress, then callback.
    - ``Serial`` plans re-enter the interpreter with each item, one at a time.
    - ``Parallel`` plans re-enter the interpreter with each branch on a bounded worker pool.
    - ``Pass`` plans need nothing further.

    Every re-entry counts one level of depth; ``max_depth`` stops runaway nesting.
    """

    def __init__(
        self,
        interpreter: WorkflowInterpreter,
        controller: StackController,
        execution_options: ExecutionOptions | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.interpreter = interpreter
        self.controller = controller
        self.execution_options = execution_options if execution_options is not None else ExecutionOptions()
        self.sleep = sleep

    def run(self, workflow: Any, execution_id: str | None = None) -> WorkflowResult:
        """
        Drive a workflow to completion and return a WorkflowResult.

        :param workflow: The root workflow node
        :type workflow: Any
        :param execution_id: Optional execution identifier
        :type execution_id: str | None
        :returns: The outcome of the run
        :rtype: WorkflowResult
        """
        if execution_id is None:
            execution_id = UUIDGenerator().generate()
        results: list[StackRecord] = []
        error_msg = None
        try:
            results = self._run_node(workflow, execution_id, 0)
        except (StackflowError, TaskFailedError) as e:
            logger.error("Execution %s failed: %s", execution_id, e)
            error_msg = str(e)
        return WorkflowResult(
            id=execution_id,
            status=WorkflowResultStatus.FAILED if error_msg else WorkflowResultStatus.SUCCESS,
            results=results,
            error=error_msg,
        )

    def _run_node(self, node: Any, execution_id: str, depth: int) -> list[StackRecord]:
        if depth > self.execution_options.max_depth:
            raise WorkflowInputError(f"Workflow nesting exceeds {self.execution_options.max_depth} levels")
        if isinstance(node, msgspec.Struct):
            node = msgspec.to_builtins(node)
        encoded = run_workflow_task(self.interpreter, {"ExecutionName": execution_id, "Input": node})
        plan = msgspec.convert(encoded, type=PlanTypes)

        if isinstance(plan, StackDispatch):
            record = self._run_stack(plan.data)
            return [record] if record is not None else []
        if isinstance(plan, SerialPlan):
            results = []
            for state in plan.data:
                results.extend(self._run_node(CallSelfState(data=state), execution_id, depth + 1))
            return results
        if isinstance(plan, ParallelPlan):
            return self._run_branches(plan, execution_id, depth)
        return []

    def _run_branches(self, plan: ParallelPlan, execution_id: str, depth: int) -> list[StackRecord]:
        workers = max(1, min(self.execution_options.max_concurrency, len(plan.data)))
        with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [
                executor.submit(
                    self._run_node,
                    CallSelfState(data=SerialState(start_at=branch.start_at, states=branch.states)),
                    execution_id,
                    depth + 1,
                )
                for branch in plan.data
            ]
            results = []
            # Keep branch order
            for future in futures:
                results.extend(future.result())
        return results

    def _run_stack(self, data: StackData) -> StackRecord | None:
        event: Any = {
            "Action": data.input.action.value,
            "Input": msgspec.to_builtins(data.input),
            "ExecutionName": data.execution_name,
        }
        waited = 0.0
        while True:
            event = load_event(run_action_task(self.controller, event))
            if event.is_done:
                return event.result
            if event.is_waiting:
                if waited >= self.execution_options.stack_timeout:
                    raise StackTimeoutError(
                        f"Stack {data.input.stack_name} still {event.action.value} after {waited:.0f}s"
                    )
                self.sleep(event.retry_after)
                waited += event.retry_after
