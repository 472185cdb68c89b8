"""Failure taxonomy for a conversational turn."""


class TurnError(Exception):
    """Base class for errors raised while handling one inbound message."""


class UnauthorizedSender(TurnError):
    def __init__(self, phone: str):
        self.phone = phone
        super().__init__(f"No active authorized contact for {phone}")


class TranscriptionFailure(TurnError):
    pass


class SynthesisFailure(TurnError):
    pass


class ToolExecutionFailure(TurnError):
    """Raised by a tool; the message is fed back to the model as the tool result."""


class UpstreamFailure(TurnError):
    """Network, auth or timeout failure at an external boundary. Aborts the turn."""

    def __init__(self, service: str, message: str):
        self.service = service
        super().__init__(f"{service}: {message}")
