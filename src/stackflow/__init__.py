"""
Stackflow - Stack Workflow Orchestration

Describe a tree of infrastructure stacks once (serial chains, parallel branches and
stack operations whose parameters reference other stacks' outputs) and have it
deployed in the right order, locally or from a managed step engine.
"""

from stackflow.backend import BackendType
from stackflow.client import Client
from stackflow.domain.entity import WorkflowResult
from stackflow.domain.value_object import ExecutionOptions
from stackflow.factory import create

__all__ = [
    "Client",
    "BackendType",
    "create",
    "ExecutionOptions",
    "WorkflowResult",
]
