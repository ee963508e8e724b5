from stackflow.application.adapter import (
    CallbackExecutor,
    CreateExecutor,
    DeleteExecutor,
    DescribeExecutor,
    EndExecutor,
    UpdateExecutor,
)
from stackflow.application.port import ActionExecutor, ExecutorFactory, StackProvider
from stackflow.application.service import OutputRegistrar
from stackflow.domain.value_object import ExecutionOptions, StackAction


class InMemoryExecutorFactory(ExecutorFactory):
    def __init__(
        self,
        provider: StackProvider,
        registrar: OutputRegistrar,
        execution_options: ExecutionOptions,
    ):
        self.provider = provider
        self.registrar = registrar
        self.execution_options = execution_options

    def get_executor(self, action: StackAction) -> ActionExecutor:
        if action == StackAction.CREATE:
            return CreateExecutor(self.provider, self.execution_options)
        elif action == StackAction.UPDATE:
            return UpdateExecutor(self.provider, self.execution_options, use_previous_template=True)
        elif action == StackAction.UPGRADE:
            return UpdateExecutor(self.provider, self.execution_options, use_previous_template=False)
        elif action == StackAction.DELETE:
            return DeleteExecutor(self.provider, self.execution_options)
        elif action == StackAction.DESCRIBE:
            return DescribeExecutor(self.provider, self.execution_options)
        elif action == StackAction.CALLBACK:
            return CallbackExecutor(self.registrar)
        elif action == StackAction.END:
            return EndExecutor()
        else:
            raise ValueError(f"Unknown stack action: {action}")
