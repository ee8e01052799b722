"""Repository classes encapsulating database operations.

Each repository is small and focused on a single aggregate (users,
catalog entries, groups, sessions, notifications). Repositories return
SQLModel objects (or tuples of an object and its derived counts) and
perform commits/refreshes where appropriate. Filtering, ordering,
pagination and aggregation are pushed into SQL.
"""

from datetime import datetime
from typing import List, Optional, Sequence, Tuple
from sqlmodel import Session, select
from sqlalchemy import case, delete, func, or_, update
from . import models


class UserRepository:
    """CRUD operations for `User` objects."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, user: models.User) -> models.User:
        """Persist a new user and return the managed instance."""
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user

    def get_by_email(self, email: str) -> Optional[models.User]:
        """Return a `User` by email or `None` if not found."""
        stmt = select(models.User).where(models.User.email == email)
        return self.session.exec(stmt).first()

    def get(self, user_id: int) -> Optional[models.User]:
        """Get a `User` by primary key."""
        return self.session.get(models.User, user_id)


def _enrolled_count():
    return (
        select(func.count(models.UserModule.user_id.distinct()))
        .where(
            models.UserModule.module_id == models.Module.module_id,
            models.UserModule.enrollment_status == 'active',
        )
        .correlate(models.Module)
        .scalar_subquery()
    )


def _topic_count():
    return (
        select(func.count(models.Topic.topic_id))
        .where(models.Topic.module_id == models.Module.module_id, models.Topic.is_active.is_(True))
        .correlate(models.Module)
        .scalar_subquery()
    )


def _study_group_count():
    return (
        select(func.count(models.StudyGroup.group_id))
        .where(models.StudyGroup.module_id == models.Module.module_id, models.StudyGroup.is_active.is_(True))
        .correlate(models.Module)
        .scalar_subquery()
    )


class ModuleRepository:
    """Queries and writes for `Module` rows. Reads only see active modules."""
    def __init__(self, session: Session):
        self.session = session

    def list_active(self, university: Optional[str] = None, search: Optional[str] = None,
                    limit: int = 50, offset: int = 0) -> List[Tuple[models.Module, int, int]]:
        """Return `(module, enrolled_count, topic_count)` tuples ordered by code.

        `search` matches code, name or description case-insensitively.
        """
        stmt = select(
            models.Module,
            _enrolled_count().label('enrolled_count'),
            _topic_count().label('topic_count'),
        ).where(models.Module.is_active.is_(True))
        if university:
            stmt = stmt.where(models.Module.university == university)
        if search:
            pattern = f"%{search}%"
            stmt = stmt.where(or_(
                models.Module.module_name.ilike(pattern),
                models.Module.module_code.ilike(pattern),
                models.Module.description.ilike(pattern),
            ))
        stmt = stmt.order_by(models.Module.module_code).offset(offset).limit(limit)
        return self.session.exec(stmt).all()

    def get_with_counts(self, module_id: int) -> Optional[Tuple[models.Module, int, int, int]]:
        """Return `(module, enrolled_count, topic_count, study_group_count)` or `None`."""
        stmt = select(
            models.Module,
            _enrolled_count().label('enrolled_count'),
            _topic_count().label('topic_count'),
            _study_group_count().label('study_group_count'),
        ).where(models.Module.module_id == module_id, models.Module.is_active.is_(True))
        return self.session.exec(stmt).first()

    def get_active(self, module_id: int) -> Optional[models.Module]:
        """Fetch an active module by id."""
        stmt = select(models.Module).where(models.Module.module_id == module_id, models.Module.is_active.is_(True))
        return self.session.exec(stmt).first()

    def create(self, module: models.Module) -> models.Module:
        """Insert a module; a duplicate `module_code` raises `IntegrityError`."""
        self.session.add(module)
        self.session.commit()
        self.session.refresh(module)
        return module

    def update(self, module: models.Module, fields: dict) -> models.Module:
        """Apply `fields` to `module` and commit."""
        for name, value in fields.items():
            setattr(module, name, value)
        self.session.add(module)
        self.session.commit()
        self.session.refresh(module)
        return module

    def soft_delete(self, module: models.Module) -> models.Module:
        """Mark `module` inactive; rows are never removed."""
        module.is_active = False
        self.session.add(module)
        self.session.commit()
        self.session.refresh(module)
        return module


class TopicRepository:
    """Queries and writes for `Topic` rows."""
    def __init__(self, session: Session):
        self.session = session

    def list_for_module(self, module_id: int) -> List[Tuple[models.Topic, int]]:
        """Return `(topic, chapter_count)` tuples for the active topics of a module."""
        chapter_count = (
            select(func.count(models.Chapter.chapter_id))
            .where(models.Chapter.topic_id == models.Topic.topic_id, models.Chapter.is_active.is_(True))
            .correlate(models.Topic)
            .scalar_subquery()
        )
        stmt = (
            select(models.Topic, chapter_count.label('chapter_count'))
            .where(models.Topic.module_id == module_id, models.Topic.is_active.is_(True))
            .order_by(models.Topic.order_sequence, models.Topic.topic_name)
        )
        return self.session.exec(stmt).all()

    def get_active(self, topic_id: int) -> Optional[models.Topic]:
        """Fetch an active topic by id."""
        stmt = select(models.Topic).where(models.Topic.topic_id == topic_id, models.Topic.is_active.is_(True))
        return self.session.exec(stmt).first()

    def create(self, topic: models.Topic) -> models.Topic:
        """Persist a new topic and return the managed instance."""
        self.session.add(topic)
        self.session.commit()
        self.session.refresh(topic)
        return topic


class ChapterRepository:
    """Queries and writes for `Chapter` rows."""
    def __init__(self, session: Session):
        self.session = session

    def list_for_topic(self, topic_id: int) -> List[models.Chapter]:
        """List the active chapters of a topic in display order."""
        stmt = (
            select(models.Chapter)
            .where(models.Chapter.topic_id == topic_id, models.Chapter.is_active.is_(True))
            .order_by(models.Chapter.order_sequence, models.Chapter.chapter_name)
        )
        return self.session.exec(stmt).all()

    def create(self, chapter: models.Chapter) -> models.Chapter:
        """Persist a new chapter and return the managed instance."""
        self.session.add(chapter)
        self.session.commit()
        self.session.refresh(chapter)
        return chapter


class GroupRepository:
    """Read access to study groups and their memberships."""
    def __init__(self, session: Session):
        self.session = session

    def get_active(self, group_id: int) -> Optional[models.StudyGroup]:
        """Fetch an active study group by id."""
        stmt = select(models.StudyGroup).where(
            models.StudyGroup.group_id == group_id,
            models.StudyGroup.is_active.is_(True),
        )
        return self.session.exec(stmt).first()

    def get_active_membership(self, group_id: int, user_id: int) -> Optional[models.GroupMember]:
        """Return the caller's active membership row, if any."""
        stmt = select(models.GroupMember).where(
            models.GroupMember.group_id == group_id,
            models.GroupMember.user_id == user_id,
            models.GroupMember.status == 'active',
        )
        return self.session.exec(stmt).first()

    def list_active_member_ids(self, group_id: int) -> List[int]:
        """Return the user ids of every active member of a group."""
        stmt = select(models.GroupMember.user_id).where(
            models.GroupMember.group_id == group_id,
            models.GroupMember.status == 'active',
        ).order_by(models.GroupMember.user_id)
        return list(self.session.exec(stmt).all())


class SessionRepository:
    """Queries over study sessions used for reminders."""
    def __init__(self, session: Session):
        self.session = session

    def list_attending_between(self, start: datetime, end: datetime) -> List[Tuple[models.StudySession, int, str]]:
        """Return `(study_session, attendee_user_id, group_name)` for sessions starting in `[start, end]`.

        Only `scheduled` sessions and `attending` attendees are returned.
        """
        stmt = (
            select(models.StudySession, models.SessionAttendee.user_id, models.StudyGroup.group_name)
            .join(models.SessionAttendee, models.SessionAttendee.session_id == models.StudySession.session_id)
            .join(models.StudyGroup, models.StudyGroup.group_id == models.StudySession.group_id)
            .where(
                models.StudySession.scheduled_start >= start,
                models.StudySession.scheduled_start <= end,
                models.StudySession.status == 'scheduled',
                models.SessionAttendee.attendance_status == 'attending',
            )
            .order_by(models.StudySession.scheduled_start, models.SessionAttendee.user_id)
        )
        return self.session.exec(stmt).all()


class NotificationRepository:
    """CRUD and bulk state transitions for `Notification` rows."""
    def __init__(self, session: Session):
        self.session = session

    def list_for_user(self, user_id: int, unread_only: bool = False, notification_type: Optional[str] = None,
                      limit: int = 50, offset: int = 0) -> List[models.Notification]:
        """List a user's notifications, newest first."""
        stmt = select(models.Notification).where(models.Notification.user_id == user_id)
        if unread_only:
            stmt = stmt.where(models.Notification.is_read.is_(False))
        if notification_type:
            stmt = stmt.where(models.Notification.notification_type == notification_type)
        stmt = stmt.order_by(
            models.Notification.created_at.desc(),
            models.Notification.notification_id.desc(),
        ).offset(offset).limit(limit)
        return self.session.exec(stmt).all()

    def counts_for_user(self, user_id: int) -> dict:
        """Return total/unread/per-category unread tallies in one aggregate query."""
        unread = models.Notification.is_read.is_(False)

        def unread_of(kind: str):
            return func.count(case((unread & (models.Notification.notification_type == kind), 1)))

        stmt = select(
            func.count(models.Notification.notification_id),
            func.count(case((unread, 1))),
            unread_of('session_reminder'),
            unread_of('group_invite'),
            unread_of('partner_match'),
        ).where(models.Notification.user_id == user_id)
        total, unread_total, reminders, invites, matches = self.session.exec(stmt).one()
        return {
            'total_notifications': total,
            'unread_notifications': unread_total,
            'unread_reminders': reminders,
            'unread_invites': invites,
            'unread_matches': matches,
        }

    def get_for_user(self, notification_id: int, user_id: int) -> Optional[models.Notification]:
        """Fetch a notification only if it belongs to `user_id`."""
        stmt = select(models.Notification).where(
            models.Notification.notification_id == notification_id,
            models.Notification.user_id == user_id,
        )
        return self.session.exec(stmt).first()

    def create(self, notification: models.Notification) -> models.Notification:
        """Persist a single notification and return the managed instance."""
        self.session.add(notification)
        self.session.commit()
        self.session.refresh(notification)
        return notification

    def create_many(self, notifications: Sequence[models.Notification]) -> List[models.Notification]:
        """Persist several notifications in a single commit."""
        self.session.add_all(notifications)
        self.session.commit()
        for n in notifications:
            self.session.refresh(n)
        return list(notifications)

    def mark_read(self, notification: models.Notification) -> models.Notification:
        """Set `is_read` on one notification; marking an already-read row is a no-op."""
        notification.is_read = True
        self.session.add(notification)
        self.session.commit()
        self.session.refresh(notification)
        return notification

    def mark_all_read(self, user_id: int) -> int:
        """Mark every unread notification of a user read and return the affected count."""
        stmt = (
            update(models.Notification)
            .where(models.Notification.user_id == user_id, models.Notification.is_read.is_(False))
            .values(is_read=True)
        )
        result = self.session.execute(stmt)
        self.session.commit()
        return result.rowcount

    def delete_for_user(self, notification_id: int, user_id: int) -> int:
        """Hard delete one of the user's notifications; returns the affected count."""
        stmt = delete(models.Notification).where(
            models.Notification.notification_id == notification_id,
            models.Notification.user_id == user_id,
        )
        result = self.session.execute(stmt)
        self.session.commit()
        return result.rowcount

    def list_pending(self, now: datetime) -> List[models.Notification]:
        """Return scheduled notifications that are due and not yet sent, oldest schedule first."""
        stmt = (
            select(models.Notification)
            .where(
                models.Notification.scheduled_for.is_not(None),
                models.Notification.scheduled_for <= now,
                models.Notification.sent_at.is_(None),
            )
            .order_by(models.Notification.scheduled_for, models.Notification.notification_id)
        )
        return self.session.exec(stmt).all()

    def mark_sent(self, notification_ids: Sequence[int], now: datetime) -> int:
        """Stamp `sent_at` on the given ids that have not been stamped yet."""
        if not notification_ids:
            return 0
        stmt = (
            update(models.Notification)
            .where(
                models.Notification.notification_id.in_(list(notification_ids)),
                models.Notification.sent_at.is_(None),
            )
            .values(sent_at=now)
        )
        result = self.session.execute(stmt)
        self.session.commit()
        return result.rowcount

    def list_recent_of_type(self, user_id: int, notification_type: str, since: datetime) -> List[models.Notification]:
        """Return a user's notifications of one type created after `since`."""
        stmt = select(models.Notification).where(
            models.Notification.user_id == user_id,
            models.Notification.notification_type == notification_type,
            models.Notification.created_at > since,
        )
        return self.session.exec(stmt).all()
