"""Messaging transport and lawyer notifications."""
from channels.base import (
    BreakerOpenError,
    MessagingTransport,
    SendBreaker,
    SendThrottle,
    ThrottledError,
    TransportError,
)
from channels.notifier import LawyerNotifier
from channels.whatsapp_adapter import WhatsAppAdapter

__all__ = [
    "BreakerOpenError", "MessagingTransport", "SendBreaker", "SendThrottle",
    "ThrottledError", "TransportError", "LawyerNotifier", "WhatsAppAdapter",
]
