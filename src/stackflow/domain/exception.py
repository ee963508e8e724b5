class StackflowError(Exception):
    """Base class for errors raised by the interpreter, the controller and their adapters."""


class WorkflowInputError(StackflowError):
    """The workflow description is malformed (missing data, dangling ``Next``, cycle, too deep)."""


class ConfigurationError(StackflowError):
    """A required identifier or destination is missing."""


class StackProviderError(StackflowError):
    """A call to the provisioning API was rejected."""

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.code = code
        self.message = message


class StackFailedError(StackflowError):
    """A stack reached a failed terminal status. The record was persisted before raising."""

    def __init__(self, stack_name: str, reason: str | None = None):
        self.stack_name = stack_name
        self.reason = reason or "Stack failed."
        super().__init__(self.reason)


class StackTimeoutError(StackflowError):
    """The local driver gave up polling a stack."""


class TaskFailedError(Exception):
    """The single error kind raised across a task boundary."""
