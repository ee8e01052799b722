"""Catalog endpoints: modules, their topics and the topics' chapters.

All reads exclude soft-deleted rows. Every endpoint requires a bearer
token; the catalog itself is shared by all users.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from .. import models, services
from ..auth import get_current_user
from ..database import get_session
from ..schemas import MAX_PAGE_SIZE, MAX_SQL_INT, ChapterIn, ModuleIn, ModuleUpdate, TopicIn
from . import PathId

router = APIRouter(prefix="/modules", tags=["modules"])
logger = logging.getLogger("studybuddy.api.modules")


def _backend_failure(message: str) -> HTTPException:
    logger.exception(message)
    return HTTPException(status_code=500, detail=message)


@router.get("")
def list_modules(
    university: Optional[str] = None,
    search: Optional[str] = None,
    limit: int = Query(50, ge=0, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0, le=MAX_SQL_INT),
    db: Session = Depends(get_session),
    user: models.User = Depends(get_current_user),
):
    """List active modules, optionally filtered by university or a search term.

    `search` matches module code, name or description case-insensitively.
    Each entry carries `enrolled_count` and `topic_count`.
    """
    try:
        return services.CatalogService(db).list_modules(university=university, search=search,
                                                       limit=limit, offset=offset)
    except SQLAlchemyError:
        raise _backend_failure('Failed to fetch modules')


@router.get("/topics/{topic_id}/chapters")
def list_topic_chapters(topic_id: PathId, db: Session = Depends(get_session),
                        user: models.User = Depends(get_current_user)):
    """List the active chapters of a topic in display order."""
    try:
        return services.CatalogService(db).list_chapters(topic_id)
    except SQLAlchemyError:
        raise _backend_failure('Failed to fetch topic chapters')


@router.post("/topics/{topic_id}/chapters", status_code=201)
def create_chapter(topic_id: PathId, payload: ChapterIn, db: Session = Depends(get_session),
                   user: models.User = Depends(get_current_user)):
    """Create a chapter inside an active topic."""
    try:
        return services.CatalogService(db).create_chapter(
            topic_id,
            payload.chapter_name,
            description=payload.description,
            order_sequence=payload.order_sequence,
            content_summary=payload.content_summary,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except SQLAlchemyError:
        raise _backend_failure('Failed to create chapter')


@router.get("/{module_id}")
def get_module(module_id: PathId, db: Session = Depends(get_session),
               user: models.User = Depends(get_current_user)):
    """Return one active module with enrollment, topic and study-group counts."""
    try:
        return services.CatalogService(db).get_module(module_id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except SQLAlchemyError:
        raise _backend_failure('Failed to fetch module')


@router.get("/{module_id}/topics")
def list_module_topics(module_id: PathId, db: Session = Depends(get_session),
                       user: models.User = Depends(get_current_user)):
    """List a module's active topics ordered by `order_sequence` then name."""
    try:
        return services.CatalogService(db).list_topics(module_id)
    except SQLAlchemyError:
        raise _backend_failure('Failed to fetch module topics')


@router.post("", status_code=201)
def create_module(payload: ModuleIn, db: Session = Depends(get_session),
                  user: models.User = Depends(get_current_user)):
    """Create a module. A duplicate `module_code` is rejected with 400."""
    try:
        return services.CatalogService(db).create_module(
            payload.module_code,
            payload.module_name,
            payload.university,
            description=payload.description,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SQLAlchemyError:
        raise _backend_failure('Failed to create module')


@router.post("/{module_id}/topics", status_code=201)
def create_topic(module_id: PathId, payload: TopicIn, db: Session = Depends(get_session),
                 user: models.User = Depends(get_current_user)):
    """Create a topic inside an active module."""
    try:
        return services.CatalogService(db).create_topic(
            module_id,
            payload.topic_name,
            description=payload.description,
            order_sequence=payload.order_sequence,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except SQLAlchemyError:
        raise _backend_failure('Failed to create topic')


@router.put("/{module_id}")
def update_module(module_id: PathId, payload: ModuleUpdate, db: Session = Depends(get_session),
                  user: models.User = Depends(get_current_user)):
    """Update `module_name` and/or `description`; other keys are ignored."""
    try:
        return services.CatalogService(db).update_module(module_id, payload.model_dump(exclude_unset=True))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except SQLAlchemyError:
        raise _backend_failure('Failed to update module')


@router.delete("/{module_id}")
def delete_module(module_id: PathId, db: Session = Depends(get_session),
                  user: models.User = Depends(get_current_user)):
    """Soft-delete a module; it disappears from every catalog read."""
    try:
        services.CatalogService(db).delete_module(module_id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except SQLAlchemyError:
        raise _backend_failure('Failed to delete module')
    return {'message': 'Module deleted successfully'}
