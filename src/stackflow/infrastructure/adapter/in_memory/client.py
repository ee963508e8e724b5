import time
from collections.abc import Callable

from stackflow.application.adapter import ParameterResolver
from stackflow.application.port import OutputStore, StackProvider
from stackflow.application.service import OutputRegistrar, StackController, WorkflowClient, WorkflowInterpreter
from stackflow.domain.value_object import ExecutionOptions
from stackflow.infrastructure.adapter.in_memory.executor_factory import InMemoryExecutorFactory
from stackflow.infrastructure.adapter.in_memory.output_store import InMemoryOutputStore
from stackflow.infrastructure.adapter.in_memory.workflow_engine import InMemoryWorkflowEngine


class InMemoryClient(WorkflowClient):
    pass


def assemble(
    client_cls: type[WorkflowClient],
    output_store: OutputStore,
    provider: StackProvider,
    execution_options: ExecutionOptions,
    sleep: Callable[[float], None] = time.sleep,
) -> WorkflowClient:
    """
    Wires the interpreter, the controller and the local driver around a store and a provider.

    :param client_cls: The client class to instantiate
    :type client_cls: type[WorkflowClient]
    :param output_store: Where stack records are persisted
    :type output_store: OutputStore
    :param provider: The provisioning API
    :type provider: StackProvider
    :param execution_options: Polling, depth and concurrency limits
    :type execution_options: ExecutionOptions
    :param sleep: Called with ``RetryAfter`` between describe polls
    :type sleep: Callable[[float], None]
    :returns: The configured client
    :rtype: WorkflowClient
    """
    registrar = OutputRegistrar(output_store)
    interpreter = WorkflowInterpreter(
        resolver=ParameterResolver(registrar),
        registrar=registrar,
        provider=provider,
    )
    controller = StackController(
        InMemoryExecutorFactory(provider=provider, registrar=registrar, execution_options=execution_options)
    )
    workflow_engine = InMemoryWorkflowEngine(
        interpreter=interpreter,
        controller=controller,
        execution_options=execution_options,
        sleep=sleep,
    )
    return client_cls(
        output_store=output_store,
        provider=provider,
        interpreter=interpreter,
        controller=controller,
        workflow_engine=workflow_engine,
        execution_options=execution_options,
    )


def create(
    provider: StackProvider,
    execution_options: ExecutionOptions | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> InMemoryClient:
    """
    Creates an InMemoryClient that keeps output documents in process memory.

    :param provider: The provisioning API
    :type provider: StackProvider
    :param execution_options: Optional limits, defaults to ExecutionOptions()
    :type execution_options: ExecutionOptions | None
    :param sleep: Called with ``RetryAfter`` between describe polls
    :type sleep: Callable[[float], None]
    :returns: Configured InMemoryClient instance
    :rtype: InMemoryClient
    """
    return assemble(
        InMemoryClient,
        InMemoryOutputStore(),
        provider,
        execution_options if execution_options is not None else ExecutionOptions(),
        sleep,
    )
