"""Pydantic request schemas used by the API.

Required fields are declared optional on purpose: presence checks live in
the services so that a missing field is reported with the same
`{"error": ...}` message whether it was omitted, null or empty.
"""

from datetime import datetime
from pydantic import BaseModel, Field
from typing import Any, Dict, Optional

# Largest value SQLite (and most SQL backends) store in an INTEGER column.
MAX_SQL_INT = 2 ** 63 - 1
MAX_PAGE_SIZE = 1000


class RegisterIn(BaseModel):
    """Payload for user registration."""
    email: str
    password: str
    first_name: str = ""
    last_name: str = ""
    university: Optional[str] = None


class LoginIn(BaseModel):
    """Payload for the login endpoint."""
    email: str
    password: str


class TokenOut(BaseModel):
    """Authentication response containing an access token."""
    access_token: str
    token_type: str = "bearer"


class ModuleIn(BaseModel):
    """Request format for creating a module."""
    module_code: Optional[str] = None
    module_name: Optional[str] = None
    description: Optional[str] = None
    university: Optional[str] = None


class ModuleUpdate(BaseModel):
    """Partial module update; keys outside the whitelist are ignored."""
    module_name: Optional[str] = None
    description: Optional[str] = None


class TopicIn(BaseModel):
    """Request format for creating a topic inside a module."""
    topic_name: Optional[str] = None
    description: Optional[str] = None
    order_sequence: Optional[int] = None


class ChapterIn(BaseModel):
    """Request format for creating a chapter inside a topic."""
    chapter_name: Optional[str] = None
    description: Optional[str] = None
    order_sequence: Optional[int] = None
    content_summary: Optional[str] = None


class NotificationIn(BaseModel):
    """Request format for creating a single notification."""
    user_id: Optional[int] = Field(default=None, le=MAX_SQL_INT)
    notification_type: Optional[str] = None
    title: Optional[str] = None
    message: Optional[str] = None
    metadata: Any = None
    scheduled_for: Optional[datetime] = None


class GroupNotificationIn(BaseModel):
    """Request format for broadcasting a notification to a study group."""
    notification_type: Optional[str] = None
    title: Optional[str] = None
    message: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class MarkSentIn(BaseModel):
    """Ids the delivery worker has dispatched.

    Typed loosely so the service can answer a missing or non-list value
    with a plain validation message.
    """
    notification_ids: Any = None
