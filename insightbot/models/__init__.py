from insightbot.models.analytics_connection import AnalyticsConnection
from insightbot.models.authorized_contact import AuthorizedContact
from insightbot.models.channel_instance import ChannelInstance
from insightbot.models.conversation_context import ConversationContext
from insightbot.models.dataset_binding import DatasetBinding
from insightbot.models.message import Message
from insightbot.models.model_documentation import ModelDocumentation
from insightbot.models.query_learning import QueryLearning
from insightbot.models.tenant import Tenant

__all__ = [
    "Tenant",
    "ChannelInstance",
    "AuthorizedContact",
    "DatasetBinding",
    "AnalyticsConnection",
    "ConversationContext",
    "Message",
    "ModelDocumentation",
    "QueryLearning",
]
