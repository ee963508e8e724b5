import time
from collections.abc import Callable

from stackflow.application.port import StackProvider
from stackflow.application.service import WorkflowClient
from stackflow.domain.value_object import ExecutionOptions
from stackflow.infrastructure.adapter.in_memory.client import assemble
from stackflow.infrastructure.adapter.sqlite.output_store import SQLiteOutputStore


class SQLiteClient(WorkflowClient):
    """SQLite-based workflow client."""

    pass


def create(
    provider: StackProvider,
    db_path: str = ":memory:",
    execution_options: ExecutionOptions | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> SQLiteClient:
    """
    Creates a SQLiteClient that persists output documents to a database file.

    :param provider: The provisioning API
    :type provider: StackProvider
    :param db_path: Path to SQLite database file (defaults to in-memory)
    :type db_path: str
    :param execution_options: Optional limits, defaults to ExecutionOptions()
    :type execution_options: ExecutionOptions | None
    :returns: Configured SQLiteClient instance
    :rtype: SQLiteClient
    """
    return assemble(
        SQLiteClient,
        SQLiteOutputStore(db_path=db_path),
        provider,
        execution_options if execution_options is not None else ExecutionOptions(db_path=db_path),
        sleep,
    )
