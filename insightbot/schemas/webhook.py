from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class EvolutionMessageKey(BaseModel):
    model_config = ConfigDict(extra="allow")

    remoteJid: Optional[str] = None
    fromMe: bool = False
    id: Optional[str] = None


class EvolutionMessageData(BaseModel):
    model_config = ConfigDict(extra="allow")

    key: EvolutionMessageKey = Field(default_factory=EvolutionMessageKey)
    pushName: Optional[str] = None
    message: Optional[dict[str, Any]] = None
    messageType: Optional[str] = None
    base64: Optional[str] = None
    body: Optional[str] = None


class EvolutionWebhook(BaseModel):
    """Evolution API v2 webhook envelope."""

    model_config = ConfigDict(extra="allow")

    event: Optional[str] = Field(default=None, validation_alias=AliasChoices("event", "type"))
    instance: Optional[str] = None
    data: EvolutionMessageData = Field(default_factory=EvolutionMessageData)


class WebhookResponse(BaseModel):
    success: bool
    status: str  # ignored, menu, processed, limit_reached, error
    message: str
    sent: bool = False
