"""Task entry points for a managed step engine.

The step engine owns waiting, iteration and fan-out; these functions only perform one
interpretation or one stack transition per invocation. Components are built once per
process from the environment.
"""

import functools
import logging
from typing import Any

from stackflow.application.adapter import ParameterResolver
from stackflow.application.service import (
    OutputRegistrar,
    StackController,
    WorkflowInterpreter,
    run_action_task,
    run_workflow_task,
)
from stackflow.domain.value_object import ExecutionOptions
from stackflow.infrastructure.adapter.aws.output_store import S3OutputStore
from stackflow.infrastructure.adapter.aws.stack_provider import CloudFormationProvider
from stackflow.infrastructure.adapter.in_memory.executor_factory import InMemoryExecutorFactory

logger = logging.getLogger(__name__)

INITIAL_EVENT_TYPE = "Initial"


@functools.lru_cache(maxsize=1)
def _components() -> tuple[WorkflowInterpreter, StackController]:
    options = ExecutionOptions.from_env()
    # A missing bucket is reported by the first entry point that needs it.
    store = S3OutputStore(options.output_bucket) if options.output_bucket else None
    registrar = OutputRegistrar(store)
    provider = CloudFormationProvider()
    interpreter = WorkflowInterpreter(ParameterResolver(registrar), registrar, provider)
    controller = StackController(InMemoryExecutorFactory(provider, registrar, options))
    return interpreter, controller


def unwrap_event(event: dict[str, Any]) -> dict[str, Any]:
    """
    Accept both the plain ``{"ExecutionName", "Input"}`` event and the wrapper the
    step engine builds, ``{"Type": "Initial", "Data": {"ExecutionName", "Input": {"value": node}}}``.
    """
    if event.get("Type") != INITIAL_EVENT_TYPE:
        return event
    data = event.get("Data") or {}
    origin = data.get("Input") or {}
    if isinstance(origin, dict) and "value" in origin:
        origin = origin["value"]
    return {"ExecutionName": data.get("ExecutionName", ""), "Input": origin}


def workflow_handler(event: dict[str, Any], context: Any = None) -> dict[str, Any]:
    logger.info("Workflow task invoked: %s", event)
    interpreter, _ = _components()
    return run_workflow_task(interpreter, unwrap_event(event))


def action_handler(event: dict[str, Any], context: Any = None) -> dict[str, Any]:
    logger.info("Action task invoked: %s", event)
    _, controller = _components()
    return run_action_task(controller, event)
