"""Bookmark mutation endpoints. Every committed change invalidates the owner's cached searches."""
from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlmodel import Session, col, delete, select

from saveit.db import get_session
from saveit.dependencies import get_cache_invalidation, get_current_user_id
from saveit.models.bookmark import (
    Bookmark,
    BookmarkCreate,
    BookmarkOpen,
    BookmarkRead,
    BookmarkUpdate,
)
from saveit.models.tag import AddTagsRequest, BookmarkTag, Tag, TagType, normalize_tag_name
from saveit.services.invalidation import CacheInvalidation
from saveit.services.ranking import get_open_counts

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/bookmarks", tags=["bookmarks"])


class OpenRecorded(BaseModel):
    bookmark_id: str
    open_count: int


def _get_owned_bookmark(session: Session, bookmark_id: str, user_id: str) -> Bookmark:
    bookmark = session.get(Bookmark, bookmark_id)
    if bookmark is None or bookmark.user_id != user_id:
        raise HTTPException(status_code=404, detail="Bookmark not found")
    return bookmark


def _to_read(session: Session, bookmark: Bookmark) -> BookmarkRead:
    names = session.exec(
        select(Tag.name)
        .join(BookmarkTag, col(BookmarkTag.tag_id) == col(Tag.id))
        .where(BookmarkTag.bookmark_id == bookmark.id)
        .order_by(col(Tag.name))
    ).all()
    read = BookmarkRead.model_validate(bookmark)
    read.tags = list(names)
    return read


def _attach_tags(
    session: Session, bookmark: Bookmark, names: list[str], tag_type: TagType = TagType.USER
) -> int:
    """Link tag names to a bookmark, creating missing tags. Returns how many links were added."""
    added = 0
    for raw in names:
        name = normalize_tag_name(raw)
        if not name:
            continue
        tag = session.exec(
            select(Tag).where(Tag.user_id == bookmark.user_id, Tag.name == name)
        ).first()
        if tag is None:
            tag = Tag(user_id=bookmark.user_id, name=name, type=tag_type)
            session.add(tag)
            session.flush()
        if session.get(BookmarkTag, (bookmark.id, tag.id)) is None:
            session.add(BookmarkTag(bookmark_id=bookmark.id, tag_id=tag.id))
            added += 1
    return added


@router.post("", response_model=BookmarkRead, status_code=201)
async def create_bookmark(
    body: BookmarkCreate,
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_session),
    invalidation: CacheInvalidation = Depends(get_cache_invalidation),
) -> BookmarkRead:
    bookmark = Bookmark(
        user_id=user_id,
        url=body.url.strip(),
        title=body.title,
        summary=body.summary,
        preview=body.preview,
        type=body.type,
        status=body.status,
        metadata_json=body.metadata_json,
    )
    session.add(bookmark)
    session.flush()
    _attach_tags(session, bookmark, body.tags)
    session.commit()
    session.refresh(bookmark)

    invalidation.on_bookmark_created(user_id, bookmark.id)
    return _to_read(session, bookmark)


@router.get("/{bookmark_id}", response_model=BookmarkRead)
async def get_bookmark(
    bookmark_id: str,
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_session),
) -> BookmarkRead:
    return _to_read(session, _get_owned_bookmark(session, bookmark_id, user_id))


@router.patch("/{bookmark_id}", response_model=BookmarkRead)
async def update_bookmark(
    bookmark_id: str,
    body: BookmarkUpdate,
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_session),
    invalidation: CacheInvalidation = Depends(get_cache_invalidation),
) -> BookmarkRead:
    bookmark = _get_owned_bookmark(session, bookmark_id, user_id)
    previous_status = bookmark.status

    for field, value in body.model_dump(exclude_unset=True).items():
        setattr(bookmark, field, value)
    bookmark.updated_at = datetime.now(timezone.utc)
    session.add(bookmark)
    session.commit()
    session.refresh(bookmark)

    if bookmark.status != previous_status:
        invalidation.on_bookmark_status_changed(user_id, bookmark.id)
    else:
        invalidation.on_bookmark_updated(user_id, bookmark.id)
    return _to_read(session, bookmark)


@router.delete("/{bookmark_id}", status_code=204)
async def delete_bookmark(
    bookmark_id: str,
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_session),
    invalidation: CacheInvalidation = Depends(get_cache_invalidation),
) -> None:
    bookmark = _get_owned_bookmark(session, bookmark_id, user_id)

    session.exec(delete(BookmarkTag).where(BookmarkTag.bookmark_id == bookmark.id))
    session.exec(delete(BookmarkOpen).where(BookmarkOpen.bookmark_id == bookmark.id))
    session.delete(bookmark)
    session.commit()

    invalidation.on_bookmark_deleted(user_id, bookmark_id)


@router.post("/{bookmark_id}/tags", response_model=BookmarkRead)
async def add_tags(
    bookmark_id: str,
    body: AddTagsRequest,
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_session),
    invalidation: CacheInvalidation = Depends(get_cache_invalidation),
) -> BookmarkRead:
    bookmark = _get_owned_bookmark(session, bookmark_id, user_id)
    added = _attach_tags(session, bookmark, body.names)
    session.commit()

    if added:
        invalidation.on_bookmark_tags_updated(user_id, bookmark.id)
    return _to_read(session, bookmark)


@router.delete("/{bookmark_id}/tags/{tag_name}", status_code=204)
async def remove_tag(
    bookmark_id: str,
    tag_name: str,
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_session),
    invalidation: CacheInvalidation = Depends(get_cache_invalidation),
) -> None:
    bookmark = _get_owned_bookmark(session, bookmark_id, user_id)
    tag = session.exec(
        select(Tag).where(Tag.user_id == user_id, Tag.name == normalize_tag_name(tag_name))
    ).first()
    if tag is None:
        raise HTTPException(status_code=404, detail="Tag not found")

    link = session.get(BookmarkTag, (bookmark.id, tag.id))
    if link is None:
        raise HTTPException(status_code=404, detail="Tag not attached to this bookmark")
    session.delete(link)
    session.commit()

    invalidation.on_bookmark_tags_updated(user_id, bookmark.id)


@router.post("/{bookmark_id}/open", response_model=OpenRecorded, status_code=201)
async def track_bookmark_open(
    bookmark_id: str,
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_session),
) -> OpenRecorded:
    """Record that the user opened a bookmark. Open counts boost search ranking.

    Cached searches are left alone; the boost catches up when they expire.
    """
    bookmark = _get_owned_bookmark(session, bookmark_id, user_id)
    session.add(BookmarkOpen(user_id=user_id, bookmark_id=bookmark.id))
    session.commit()

    counts = get_open_counts(session, user_id, [bookmark.id])
    return OpenRecorded(bookmark_id=bookmark.id, open_count=counts.get(bookmark.id, 0))
