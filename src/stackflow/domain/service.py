from stackflow.domain.entity import Branch, SerialState, State, WorkflowState
from stackflow.domain.exception import WorkflowInputError


def stamp_execution_name(state: State, execution_name: str) -> State:
    """
    Bind ``execution_name`` to a node that does not already carry one.

    :param state: The node to stamp
    :type state: State
    :param execution_name: The execution identifier of the current run
    :type execution_name: str
    :returns: The same node, for chaining
    :rtype: State
    """
    if not state.execution_name:
        state.execution_name = execution_name
    return state


def stamp_branches(branches: list[Branch], execution_name: str) -> list[Branch]:
    """Stamp every node of every branch without flattening them."""
    for branch in branches:
        for state in branch.states.values():
            stamp_execution_name(state, execution_name)
    return branches


def branch_of(state: SerialState | Branch) -> Branch:
    """
    Build the linked path a serial node describes.

    :raises WorkflowInputError: If ``StartAt`` or ``States`` is missing
    """
    if isinstance(state, Branch):
        return state
    start_at = state.start_at
    states = state.states
    if not start_at or not states:
        raise WorkflowInputError("Branch requires StartAt and States")
    return Branch(start_at=start_at, states=states)


def linearize_branch(branch: Branch, execution_name: str) -> list[WorkflowState]:
    """
    Walk a branch from ``StartAt`` along ``Next`` until a terminal node.

    Every visited node is stamped with ``execution_name`` if it has none.

    :param branch: The branch to walk
    :type branch: Branch
    :param execution_name: The execution identifier of the current run
    :type execution_name: str
    :returns: The nodes in traversal order
    :rtype: list[WorkflowState]
    :raises WorkflowInputError: If a ``Next`` target does not exist or a name is visited twice
    """
    ordered: list[WorkflowState] = []
    seen: set[str] = set()
    name = branch.start_at
    while True:
        if name in seen:
            raise WorkflowInputError(f"Cycle detected in branch at state '{name}'")
        try:
            state = branch.states[name]
        except KeyError:
            raise WorkflowInputError(f"State '{name}' is not defined in branch") from None
        seen.add(name)
        ordered.append(stamp_execution_name(state, execution_name))
        if state.end or not state.next:
            return ordered
        name = state.next
