"""Closed vocabularies shared by models, schemas and senders."""

from enum import Enum


class Channel(str, Enum):
    EMAIL = "EMAIL"
    SMS = "SMS"
    PUSH = "PUSH"
    WHATSAPP = "WHATSAPP"
    IN_APP = "IN_APP"


class NotificationType(str, Enum):
    TRANSACTIONAL = "TRANSACTIONAL"
    MARKETING = "MARKETING"
    ALERT = "ALERT"
    VERIFICATION = "VERIFICATION"
    REMINDER = "REMINDER"
    SUPPORT = "SUPPORT"
    SYSTEM = "SYSTEM"
    BROADCAST = "BROADCAST"


class Priority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


class NotificationStatus(str, Enum):
    PENDING = "PENDING"
    RETRYING = "RETRYING"
    SENT = "SENT"
    FAILED = "FAILED"
