"""Notification endpoints.

The caller's inbox (list, counts, read state, delete), creation of single
notifications, group broadcast, and the pending/mark-sent pair used by an
external delivery worker.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from .. import models, services
from ..auth import get_current_user
from ..database import get_session
from ..schemas import MAX_PAGE_SIZE, MAX_SQL_INT, GroupNotificationIn, MarkSentIn, NotificationIn
from . import PathId

router = APIRouter(prefix="/notifications", tags=["notifications"])
logger = logging.getLogger("studybuddy.api.notifications")


def _backend_failure(message: str) -> HTTPException:
    logger.exception(message)
    return HTTPException(status_code=500, detail=message)


@router.get("")
def list_notifications(
    unread_only: bool = Query(False, alias="unreadOnly"),
    notification_type: Optional[str] = Query(None, alias="type"),
    limit: int = Query(50, ge=0, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0, le=MAX_SQL_INT),
    db: Session = Depends(get_session),
    user: models.User = Depends(get_current_user),
):
    """List the caller's notifications, newest first."""
    try:
        return services.NotificationService(db).list_for_user(
            user.user_id,
            unread_only=unread_only,
            notification_type=notification_type,
            limit=limit,
            offset=offset,
        )
    except SQLAlchemyError:
        raise _backend_failure('Failed to fetch notifications')


@router.get("/counts")
def notification_counts(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Return total, unread and per-category unread counts for the caller."""
    try:
        return services.NotificationService(db).counts(user.user_id)
    except SQLAlchemyError:
        raise _backend_failure('Failed to fetch notification counts')


@router.get("/pending")
def pending_notifications(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """List notifications that are due for delivery and not yet marked sent."""
    try:
        return services.NotificationService(db).list_pending()
    except SQLAlchemyError:
        raise _backend_failure('Failed to fetch pending notifications')


@router.put("/read-all")
def mark_all_read(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Mark every unread notification of the caller as read."""
    try:
        updated = services.NotificationService(db).mark_all_read(user.user_id)
    except SQLAlchemyError:
        raise _backend_failure('Failed to mark all notifications as read')
    return {'message': f'Marked {updated} notifications as read', 'updated': updated}


@router.put("/mark-sent")
def mark_sent(payload: MarkSentIn, db: Session = Depends(get_session),
              user: models.User = Depends(get_current_user)):
    """Record that the delivery worker dispatched the given notifications."""
    try:
        updated = services.NotificationService(db).mark_sent(payload.notification_ids)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SQLAlchemyError:
        raise _backend_failure('Failed to mark notifications as sent')
    return {'message': f'Marked {updated} notifications as sent', 'updated': updated}


@router.put("/{notification_id}/read")
def mark_read(notification_id: PathId, db: Session = Depends(get_session),
              user: models.User = Depends(get_current_user)):
    """Mark one of the caller's notifications as read and return it."""
    try:
        return services.NotificationService(db).mark_read(notification_id, user.user_id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except SQLAlchemyError:
        raise _backend_failure('Failed to mark notification as read')


@router.delete("/{notification_id}")
def delete_notification(notification_id: PathId, db: Session = Depends(get_session),
                        user: models.User = Depends(get_current_user)):
    """Permanently delete one of the caller's notifications."""
    try:
        services.NotificationService(db).delete(notification_id, user.user_id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except SQLAlchemyError:
        raise _backend_failure('Failed to delete notification')
    return {'message': 'Notification deleted successfully'}


@router.post("", status_code=201)
def create_notification(payload: NotificationIn, db: Session = Depends(get_session),
                        user: models.User = Depends(get_current_user)):
    """Create a notification for any recipient (system and admin use)."""
    try:
        return services.NotificationService(db).create(
            payload.user_id,
            payload.notification_type,
            payload.title,
            payload.message,
            metadata=payload.metadata,
            scheduled_for=payload.scheduled_for,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SQLAlchemyError:
        raise _backend_failure('Failed to create notification')


@router.post("/group/{group_id}/notify")
def notify_group(group_id: PathId, payload: GroupNotificationIn, db: Session = Depends(get_session),
                 user: models.User = Depends(get_current_user)):
    """Send one notification to every active member of a study group.

    Only the group's creator or one of its admins may broadcast.
    """
    try:
        sent = services.NotificationService(db).notify_group(
            group_id,
            user.user_id,
            payload.notification_type,
            payload.title,
            payload.message,
            metadata=payload.metadata,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except SQLAlchemyError:
        raise _backend_failure('Failed to send group notifications')
    return {'message': f'Sent notifications to {sent} group members', 'notifications': sent}
