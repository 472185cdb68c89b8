from enum import Enum


class AgentState(str, Enum):
    AWAITING_MODEL = "awaiting_model"
    EXECUTING_TOOLS = "executing_tools"
    DONE = "done"


VALID_TRANSITIONS = {
    AgentState.AWAITING_MODEL: [AgentState.EXECUTING_TOOLS, AgentState.DONE],
    AgentState.EXECUTING_TOOLS: [AgentState.AWAITING_MODEL, AgentState.DONE],
    AgentState.DONE: [],
}


class InvalidTransitionError(Exception):
    def __init__(self, from_state: AgentState, to_state: AgentState):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid transition: {from_state.value} -> {to_state.value}")


def can_transition(from_state: AgentState, to_state: AgentState) -> bool:
    """Check if transition is valid."""
    return to_state in VALID_TRANSITIONS.get(from_state, [])


def transition(from_state: AgentState, to_state: AgentState) -> AgentState:
    """Perform state transition. Raises InvalidTransitionError if not allowed."""
    if not can_transition(from_state, to_state):
        raise InvalidTransitionError(from_state, to_state)
    return to_state


def request_tools(current_state: AgentState) -> AgentState:
    """Model asked for tool calls."""
    return transition(current_state, AgentState.EXECUTING_TOOLS)


def resubmit(current_state: AgentState) -> AgentState:
    """Tool results appended, back to the model."""
    return transition(current_state, AgentState.AWAITING_MODEL)


def finish(current_state: AgentState) -> AgentState:
    return transition(current_state, AgentState.DONE)
