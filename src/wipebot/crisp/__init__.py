"""Crisp chat platform access: HTTP client, payload models and source interface."""

from wipebot.crisp.client import CrispClient
from wipebot.crisp.models import Conversation, ConversationDetail, Message
from wipebot.crisp.source import CONVERSATION_STATUSES, ConversationSource

__all__ = [
    "CONVERSATION_STATUSES",
    "Conversation",
    "ConversationDetail",
    "ConversationSource",
    "CrispClient",
    "Message",
]
