"""SQLModel data models.

This module defines the application's database tables using SQLModel.
Table and column names follow the relational schema shared with the
rest of the study platform (`modules.module_id`, `notifications.user_id`
and so on), so raw SQL written against that schema keeps working.
"""

from typing import Optional
from datetime import datetime, timezone
from sqlalchemy import Column, Text
from sqlmodel import SQLModel, Field

NOTIFICATION_TYPES = (
    "session_reminder",
    "group_invite",
    "progress_update",
    "partner_match",
    "message",
    "system",
)


def utcnow() -> datetime:
    """Current UTC time as a naive datetime; every stored timestamp is naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class User(SQLModel, table=True):
    """A registered user.

    Fields:
    - `email`: unique login name
    - `password_hash`: hashed password string (never store plaintext)
    """
    __tablename__ = "users"

    user_id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(index=True, nullable=False, unique=True)
    password_hash: str
    first_name: str = ""
    last_name: str = ""
    university: Optional[str] = None
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)


class Module(SQLModel, table=True):
    """A course module; the root of the catalog hierarchy."""
    __tablename__ = "modules"

    module_id: Optional[int] = Field(default=None, primary_key=True)
    module_code: str = Field(max_length=50, nullable=False, unique=True)
    module_name: str = Field(max_length=255)
    description: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    university: str = Field(max_length=255, index=True)
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)


class UserModule(SQLModel, table=True):
    """Enrollment of a user in a module.

    `enrollment_status` is one of `active`, `completed` or `dropped`; only
    active enrollments count toward a module's `enrolled_count`.
    """
    __tablename__ = "user_modules"

    user_module_id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.user_id", index=True)
    module_id: int = Field(foreign_key="modules.module_id", index=True)
    enrollment_status: str = "active"
    enrolled_at: datetime = Field(default_factory=utcnow)


class Topic(SQLModel, table=True):
    """A topic inside a module, ordered by `order_sequence` then name."""
    __tablename__ = "topics"

    topic_id: Optional[int] = Field(default=None, primary_key=True)
    module_id: int = Field(foreign_key="modules.module_id", index=True)
    topic_name: str = Field(max_length=255)
    description: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    order_sequence: int = 0
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)


class Chapter(SQLModel, table=True):
    """A chapter inside a topic."""
    __tablename__ = "chapters"

    chapter_id: Optional[int] = Field(default=None, primary_key=True)
    topic_id: int = Field(foreign_key="topics.topic_id", index=True)
    chapter_name: str = Field(max_length=255)
    description: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    order_sequence: int = 0
    content_summary: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)


class StudyGroup(SQLModel, table=True):
    """A study group attached to a module and owned by its creator."""
    __tablename__ = "study_groups"

    group_id: Optional[int] = Field(default=None, primary_key=True)
    group_name: str = Field(max_length=255)
    creator_id: int = Field(foreign_key="users.user_id")
    module_id: int = Field(foreign_key="modules.module_id", index=True)
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)


class GroupMember(SQLModel, table=True):
    """Membership of a user in a study group.

    `role` is `admin`, `moderator` or `member`; `status` is `pending`,
    `active`, `inactive` or `removed`.
    """
    __tablename__ = "group_members"

    membership_id: Optional[int] = Field(default=None, primary_key=True)
    group_id: int = Field(foreign_key="study_groups.group_id", index=True)
    user_id: int = Field(foreign_key="users.user_id", index=True)
    role: str = "member"
    status: str = "active"
    joined_at: datetime = Field(default_factory=utcnow)


class StudySession(SQLModel, table=True):
    """A scheduled study session of a group."""
    __tablename__ = "study_sessions"

    session_id: Optional[int] = Field(default=None, primary_key=True)
    group_id: int = Field(foreign_key="study_groups.group_id", index=True)
    organizer_id: int = Field(foreign_key="users.user_id")
    session_title: str = Field(max_length=255)
    scheduled_start: datetime
    scheduled_end: datetime
    status: str = "scheduled"
    created_at: datetime = Field(default_factory=utcnow)


class SessionAttendee(SQLModel, table=True):
    """A user's attendance response for a study session."""
    __tablename__ = "session_attendees"

    attendance_id: Optional[int] = Field(default=None, primary_key=True)
    session_id: int = Field(foreign_key="study_sessions.session_id", index=True)
    user_id: int = Field(foreign_key="users.user_id", index=True)
    attendance_status: str = "pending"


class Notification(SQLModel, table=True):
    """A notification addressed to a single recipient.

    `metadata_json` is stored in the `metadata` column as serialized JSON
    (the attribute name `metadata` is reserved by SQLAlchemy). A null
    `scheduled_for` means the notification is delivered immediately;
    `sent_at` is stamped once by the delivery worker.
    """
    __tablename__ = "notifications"

    notification_id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.user_id", index=True)
    notification_type: str = Field(max_length=100)
    title: str = Field(max_length=255)
    message: str = Field(sa_column=Column(Text, nullable=False))
    metadata_json: Optional[str] = Field(default=None, sa_column=Column("metadata", Text, nullable=True))
    is_read: bool = False
    scheduled_for: Optional[datetime] = Field(default=None, index=True)
    sent_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
