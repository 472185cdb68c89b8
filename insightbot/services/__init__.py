from insightbot.services.agent_state import (
    AgentState,
    InvalidTransitionError,
    can_transition,
    finish,
    request_tools,
    resubmit,
    transition,
)
from insightbot.services.errors import (
    SynthesisFailure,
    ToolExecutionFailure,
    TranscriptionFailure,
    TurnError,
    UnauthorizedSender,
    UpstreamFailure,
)
from insightbot.services.result import Result
