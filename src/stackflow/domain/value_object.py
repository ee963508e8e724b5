import os
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum

IN_PROGRESS_SUFFIX = "_IN_PROGRESS"
FAILED_SUFFIX = "FAILED"


@dataclass
class ExecutionOptions:
    """Settings shared by the interpreter, the controller and the local driver."""

    output_bucket: str | None = None
    describe_interval: int = 15
    max_depth: int = 32
    max_concurrency: int = 40
    stack_timeout: float = 7200.0
    db_path: str = ":memory:"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "ExecutionOptions":
        """
        Build options from environment variables.

        :param environ: Mapping to read from, defaults to ``os.environ``
        :type environ: Mapping[str, str] | None
        :returns: The populated options
        :rtype: ExecutionOptions
        """
        env = os.environ if environ is None else environ
        defaults = cls()
        return cls(
            output_bucket=env.get("CALLBACK_BUCKET_NAME") or None,
            describe_interval=int(env.get("STACKFLOW_DESCRIBE_INTERVAL", defaults.describe_interval)),
            max_depth=int(env.get("STACKFLOW_MAX_DEPTH", defaults.max_depth)),
            max_concurrency=int(env.get("STACKFLOW_MAX_CONCURRENCY", defaults.max_concurrency)),
            stack_timeout=float(env.get("STACKFLOW_STACK_TIMEOUT", defaults.stack_timeout)),
            db_path=env.get("STACKFLOW_DB_PATH", defaults.db_path),
        )


class NodeType(str, Enum):
    STACK = "Stack"
    SERIAL = "Serial"
    PARALLEL = "Parallel"
    PASS = "Pass"
    CALL_SELF = "CallSelf"


class StackAction(str, Enum):
    CREATE = "Create"
    UPDATE = "Update"
    UPGRADE = "Upgrade"
    DELETE = "Delete"
    DESCRIBE = "Describe"
    CALLBACK = "Callback"
    END = "End"


class StackStatus(str, Enum):
    """Stack statuses the controller seeds or inspects directly."""

    CREATE_IN_PROGRESS = "CREATE_IN_PROGRESS"
    CREATE_COMPLETE = "CREATE_COMPLETE"
    CREATE_FAILED = "CREATE_FAILED"
    UPDATE_IN_PROGRESS = "UPDATE_IN_PROGRESS"
    UPDATE_COMPLETE = "UPDATE_COMPLETE"
    UPDATE_FAILED = "UPDATE_FAILED"
    DELETE_IN_PROGRESS = "DELETE_IN_PROGRESS"
    DELETE_COMPLETE = "DELETE_COMPLETE"
    DELETE_FAILED = "DELETE_FAILED"


class WorkflowResultStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


def is_in_progress(status: str | None) -> bool:
    return bool(status) and status.endswith(IN_PROGRESS_SUFFIX)


def is_failed(status: str | None) -> bool:
    return bool(status) and status.endswith(FAILED_SUFFIX)
