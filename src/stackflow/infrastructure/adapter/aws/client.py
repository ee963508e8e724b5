import time
from collections.abc import Callable
from typing import Any

from stackflow.application.port import StackProvider
from stackflow.application.service import WorkflowClient
from stackflow.domain.exception import ConfigurationError
from stackflow.domain.value_object import ExecutionOptions
from stackflow.infrastructure.adapter.aws.output_store import S3OutputStore
from stackflow.infrastructure.adapter.aws.stack_provider import CloudFormationProvider
from stackflow.infrastructure.adapter.in_memory.client import assemble


class S3Client(WorkflowClient):
    """Workflow client that persists output documents to the callback bucket."""

    pass


def create(
    provider: StackProvider | None = None,
    execution_options: ExecutionOptions | None = None,
    s3_client: Any = None,
    sleep: Callable[[float], None] = time.sleep,
) -> S3Client:
    """
    Creates an S3Client around the configured output bucket.

    :param provider: The provisioning API, defaults to CloudFormationProvider()
    :type provider: StackProvider | None
    :param execution_options: Limits and the output bucket, defaults to ExecutionOptions.from_env()
    :type execution_options: ExecutionOptions | None
    :param s3_client: Optional boto3 S3 client
    :returns: Configured S3Client instance
    :rtype: S3Client
    :raises ConfigurationError: If no output bucket is configured
    """
    execution_options = execution_options if execution_options is not None else ExecutionOptions.from_env()
    if not execution_options.output_bucket:
        raise ConfigurationError("Output store or execution name is undefined.")
    return assemble(
        S3Client,
        S3OutputStore(execution_options.output_bucket, client=s3_client),
        provider if provider is not None else CloudFormationProvider(),
        execution_options,
        sleep,
    )
