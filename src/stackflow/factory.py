from stackflow.application.port import StackProvider
from stackflow.backend import BackendType
from stackflow.client import Client
from stackflow.domain.value_object import ExecutionOptions
from stackflow.infrastructure.adapter.aws.client import create as create_s3_client
from stackflow.infrastructure.adapter.aws.stack_provider import CloudFormationProvider
from stackflow.infrastructure.adapter.in_memory.client import create as create_in_memory_client
from stackflow.infrastructure.adapter.sqlite.client import create as create_sqlite_client


def create(
    backend: BackendType,
    provider: StackProvider | None = None,
    execution_options: ExecutionOptions | None = None,
    **kwargs,
) -> Client:
    """
    Factory function to create a Client with the specified backend.

    :param backend: The backend type used to persist output documents
    :type backend: BackendType
    :param provider: The provisioning API, defaults to CloudFormationProvider()
    :type provider: StackProvider | None
    :param execution_options: Optional limits, defaults to ExecutionOptions.from_env()
    :type execution_options: ExecutionOptions | None
    :param kwargs: Additional backend-specific configuration options
        (``db_path`` for SQLite, ``s3_client`` for S3, ``sleep`` for every backend)
    :returns: A configured Client instance
    :rtype: Client
    :raises ValueError: If the backend type is unsupported
    :raises ConfigurationError: If the S3 backend has no bucket configured
    """
    provider = provider if provider is not None else CloudFormationProvider()
    execution_options = execution_options if execution_options is not None else ExecutionOptions.from_env()
    extra = {"sleep": kwargs["sleep"]} if "sleep" in kwargs else {}

    if backend == BackendType.IN_MEMORY:
        workflow_client = create_in_memory_client(provider, execution_options, **extra)

    elif backend == BackendType.SQLITE:
        db_path = kwargs.get("db_path", execution_options.db_path)
        workflow_client = create_sqlite_client(provider, db_path=db_path, execution_options=execution_options, **extra)

    elif backend == BackendType.S3:
        workflow_client = create_s3_client(
            provider, execution_options=execution_options, s3_client=kwargs.get("s3_client"), **extra
        )

    else:
        raise ValueError(f"Unsupported backend: {backend}")

    # Create the unified client façade
    return Client(backend=workflow_client.engine, output_store=workflow_client.output_store)
