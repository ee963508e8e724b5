from abc import ABC, abstractmethod
from typing import Any

from stackflow.domain.entity import Parameter, StackEvent, StackInput, StackRecord, WorkflowResult
from stackflow.domain.value_object import StackAction


class WorkflowEngine(ABC):
    """Abstract base class for the component that plays the driver role."""

    @abstractmethod
    def run(self, workflow: Any, execution_id: str | None = None) -> WorkflowResult:
        """
        Drive a workflow description to completion.

        :param workflow: The root workflow node, as a mapping or a decoded node
        :type workflow: Any
        :param execution_id: Optional execution identifier, generated when absent
        :type execution_id: str | None
        :returns: The outcome and every stack record produced
        :rtype: WorkflowResult
        """
        ...


class OutputStore(ABC):
    """Abstract interface for persisting output documents by path."""

    @abstractmethod
    def set(self, key: str, value: bytes):
        """
        Store a JSON document under the given path.

        :param key: Path of the form ``<executionId>/<stackName>/output.json``
        :type key: str
        :param value: The encoded JSON body
        :type value: bytes
        """

    @abstractmethod
    def get(self, key: str) -> bytes:
        """
        Retrieve a JSON document by path.

        :param key: The path to read
        :type key: str
        :returns: The encoded JSON body
        :rtype: bytes
        :raises KeyError: If nothing is stored under the path
        """


class StackProvider(ABC):
    """Abstract interface to the infrastructure provisioning API."""

    @abstractmethod
    def create_stack(self, region: str, stack_input: StackInput) -> str:
        """
        Create a stack with rollback and termination protection disabled.

        :returns: The new stack id
        :rtype: str
        :raises StackProviderError: If the provider rejects the call
        """

    @abstractmethod
    def update_stack(
        self,
        region: str,
        stack_input: StackInput,
        use_previous_template: bool,
        disable_rollback: bool,
    ) -> str:
        """
        Update a stack, either keeping its template or replacing it with ``TemplateURL``.

        :returns: The stack id
        :rtype: str
        :raises StackProviderError: If the provider rejects the call
        """

    @abstractmethod
    def delete_stack(self, region: str, stack_id: str) -> None:
        """
        Delete a stack.

        :raises StackProviderError: If the provider rejects the call
        """

    @abstractmethod
    def describe_stack(self, region: str, stack_name: str) -> StackRecord | None:
        """
        Describe a stack by name or id.

        :returns: The current record, or None when the stack does not exist
        :rtype: StackRecord | None
        """

    @abstractmethod
    def set_termination_protection(self, region: str, stack_id: str, enabled: bool) -> None:
        """
        Enable or disable termination protection.

        :raises StackProviderError: If the provider rejects the call
        """


class ActionExecutor(ABC):
    """Abstract executor for one controller action."""

    @abstractmethod
    def execute(self, event: StackEvent) -> StackEvent:
        """
        Perform the action carried by the event and return the next event.

        :param event: The incoming event
        :type event: StackEvent
        :returns: The event describing what to invoke next
        :rtype: StackEvent
        """
        ...


class ExecutorFactory(ABC):
    """Abstract factory for action executors."""

    @abstractmethod
    def get_executor(self, action: StackAction) -> ActionExecutor:
        """
        Get the executor for an action.

        :param action: The action to perform
        :type action: StackAction
        :returns: An executor capable of performing it
        :rtype: ActionExecutor
        :raises ValueError: If the action has no executor
        """


class ReferenceResolver(ABC):
    """Abstract interface for materialising deferred parameter references."""

    @abstractmethod
    def resolve(self, parameters: list[Parameter], execution_id: str) -> list[Parameter]:
        """
        Replace every reference with its literal key and value, keeping order.

        :param parameters: The parameters of one stack request
        :type parameters: list[Parameter]
        :param execution_id: Execution under which producing stacks stored their records
        :type execution_id: str
        :returns: The resolved parameters
        :rtype: list[Parameter]
        """
