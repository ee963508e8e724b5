import logging
import threading
from collections.abc import Callable
from typing import Any

import boto3
from botocore.exceptions import ClientError

from stackflow.application.port import StackProvider
from stackflow.domain.entity import StackInput, StackRecord
from stackflow.domain.exception import StackProviderError

logger = logging.getLogger(__name__)

CAPABILITIES = ["CAPABILITY_IAM", "CAPABILITY_NAMED_IAM", "CAPABILITY_AUTO_EXPAND"]


def _provider_error(error: ClientError) -> StackProviderError:
    details = error.response.get("Error", {})
    return StackProviderError(details.get("Message", str(error)), details.get("Code"))


class CloudFormationProvider(StackProvider):
    """StackProvider backed by AWS CloudFormation through boto3.

    One client is created per region on first use.
    """

    def __init__(self, client_factory: Callable[[str], Any] | None = None):
        """
        :param client_factory: Builds a CloudFormation client for a region,
            defaults to ``boto3.client("cloudformation", region_name=...)``
        :type client_factory: Callable[[str], Any] | None
        """
        self.client_factory = client_factory or (lambda region: boto3.client("cloudformation", region_name=region))
        self._clients: dict[str, Any] = {}
        self._lock = threading.Lock()

    def client(self, region: str):
        with self._lock:
            if region not in self._clients:
                self._clients[region] = self.client_factory(region)
            return self._clients[region]

    @staticmethod
    def _parameters(stack_input: StackInput) -> list[dict[str, Any]]:
        parameters = []
        for param in stack_input.parameters:
            if param.use_previous_value:
                parameters.append({"ParameterKey": param.parameter_key, "UsePreviousValue": True})
            else:
                parameters.append({"ParameterKey": param.parameter_key, "ParameterValue": param.parameter_value})
        return parameters

    @staticmethod
    def _tags(stack_input: StackInput) -> list[dict[str, str]]:
        return [{"Key": tag.key, "Value": tag.value} for tag in stack_input.tags or []]

    def create_stack(self, region: str, stack_input: StackInput) -> str:
        logger.info("Creating stack %s in %s from %s", stack_input.stack_name, region, stack_input.template_url)
        try:
            response = self.client(region).create_stack(
                StackName=stack_input.stack_name,
                TemplateURL=stack_input.template_url,
                Parameters=self._parameters(stack_input),
                Tags=self._tags(stack_input),
                Capabilities=CAPABILITIES,
                DisableRollback=True,
                EnableTerminationProtection=False,
            )
        except ClientError as e:
            raise _provider_error(e) from e
        return response["StackId"]

    def update_stack(
        self,
        region: str,
        stack_input: StackInput,
        use_previous_template: bool,
        disable_rollback: bool,
    ) -> str:
        request: dict[str, Any] = {
            "StackName": stack_input.stack_name,
            "Parameters": self._parameters(stack_input),
            "Capabilities": CAPABILITIES,
            "DisableRollback": disable_rollback,
        }
        if use_previous_template:
            request["UsePreviousTemplate"] = True
        else:
            request["TemplateURL"] = stack_input.template_url
        if stack_input.tags:
            request["Tags"] = self._tags(stack_input)

        logger.info(
            "Updating stack %s in %s (previous template: %s, rollback disabled: %s)",
            stack_input.stack_name,
            region,
            use_previous_template,
            disable_rollback,
        )
        try:
            response = self.client(region).update_stack(**request)
        except ClientError as e:
            raise _provider_error(e) from e
        return response["StackId"]

    def delete_stack(self, region: str, stack_id: str) -> None:
        logger.info("Deleting stack %s in %s", stack_id, region)
        try:
            self.client(region).delete_stack(StackName=stack_id)
        except ClientError as e:
            raise _provider_error(e) from e

    def describe_stack(self, region: str, stack_name: str) -> StackRecord | None:
        try:
            response = self.client(region).describe_stacks(StackName=stack_name)
        except ClientError as e:
            error = _provider_error(e)
            if "does not exist" in error.message:
                return None
            raise error from e
        stacks = response.get("Stacks") or []
        if not stacks:
            return None
        return StackRecord.from_describe(stacks[0])

    def set_termination_protection(self, region: str, stack_id: str, enabled: bool) -> None:
        try:
            self.client(region).update_termination_protection(
                EnableTerminationProtection=enabled,
                StackName=stack_id,
            )
        except ClientError as e:
            raise _provider_error(e) from e
