from insightbot.schemas.webhook import EvolutionWebhook, WebhookResponse

__all__ = ["EvolutionWebhook", "WebhookResponse"]
