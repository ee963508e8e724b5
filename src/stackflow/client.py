from typing import Any

from stackflow.application.port import OutputStore, WorkflowEngine
from stackflow.application.service import load_node
from stackflow.domain.entity import WorkflowResult


class Client:
    """
    Unified client façade for workflow execution.

    The Client is the only thing users interact with. It exposes ``run`` plus read and
    delete access to the output documents of past executions, and holds a reference to
    the chosen backend implementation under the hood.
    """

    def __init__(self, backend: WorkflowEngine, output_store: OutputStore):
        """
        Initialize the client with a backend engine and output store.

        :param backend: The workflow engine implementation (e.g., InMemoryWorkflowEngine)
        :type backend: WorkflowEngine
        :param output_store: Where the engine persists stack records
        :type output_store: OutputStore
        """
        self._engine = backend
        self._store = output_store

    @property
    def engine(self) -> WorkflowEngine:
        return self._engine

    @property
    def output_store(self) -> OutputStore:
        return self._store

    def run(self, workflow: Any, execution_id: str | None = None) -> WorkflowResult:
        """
        Execute a workflow.

        :param workflow: The root node as a mapping (Stack, Pass, Serial, Parallel or a bare branch)
        :type workflow: Any
        :param execution_id: Optional execution identifier
        :type execution_id: str | None
        :returns: The workflow execution result
        :rtype: WorkflowResult
        :raises WorkflowInputError: If the workflow cannot be decoded
        """
        node = load_node(workflow)
        return self._engine.run(node, execution_id)

    def get_execution(self, execution_id: str) -> dict[str, Any]:
        """
        Retrieve every output document of an execution.

        :param execution_id: The execution identifier
        :type execution_id: str
        :returns: Mapping of stack name to its ``{stackName: record}`` document
        :rtype: dict[str, Any]
        :raises KeyError: If nothing is stored for the execution
        """
        if hasattr(self._store, "get_execution_outputs"):
            return self._store.get_execution_outputs(execution_id)
        else:
            raise NotImplementedError("Backend does not support execution querying")

    def delete_execution(self, execution_id: str) -> bool:
        """
        Delete every output document of an execution.

        :param execution_id: The execution identifier
        :type execution_id: str
        :returns: True if any documents were deleted, False otherwise
        :rtype: bool
        """
        if hasattr(self._store, "delete_execution_outputs"):
            return self._store.delete_execution_outputs(execution_id)
        else:
            raise NotImplementedError("Backend does not support execution deletion")

    def list_executions(self) -> list[str]:
        """
        Get a list of all execution IDs that have stored outputs.

        :returns: List of execution identifiers
        :rtype: list[str]
        """
        if hasattr(self._store, "list_execution_ids"):
            return self._store.list_execution_ids()
        else:
            raise NotImplementedError("Backend does not support execution listing")
