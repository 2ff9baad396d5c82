"""
Database Models
===============
SQLAlchemy models for the Ganttium backend.
"""

from .base import Base, utcnow
from .organization import ROLES, Organization, User, UserActivityLog, UserOrganization
from .project import Project, Task, TaskDependency
from .tracking import CostItem, Issue, Risk, Stakeholder
from .resource import Resource, ResourceAssignment, ResourceTimeEntry
from .document import Document, DocumentStatus
from .chat import ChatConversation, ChatMessage, ChatParticipant, MessageReaction
from .finance import ExchangeRate, ExchangeRateSync
from .notification import Notification

__all__ = [
    "Base",
    "utcnow",
    "ROLES",
    "Organization",
    "User",
    "UserActivityLog",
    "UserOrganization",
    "Project",
    "Task",
    "TaskDependency",
    "CostItem",
    "Issue",
    "Risk",
    "Stakeholder",
    "Resource",
    "ResourceAssignment",
    "ResourceTimeEntry",
    "Document",
    "DocumentStatus",
    "ChatConversation",
    "ChatMessage",
    "ChatParticipant",
    "MessageReaction",
    "ExchangeRate",
    "ExchangeRateSync",
    "Notification",
]
