from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from newsqueue.db import get_session
from newsqueue.errors import QueueValidationError
from newsqueue.schemas import ReindexRequest, ReindexResultRead, ThumbnailRead
from newsqueue.services.relinker import list_thumbnails, reindex

router = APIRouter(prefix="/api/posts", tags=["thumbnails"])

SessionDep = Depends(get_session)


@router.get("/{post_id}/thumbnails", response_model=list[ThumbnailRead])
async def get_post_thumbnails(post_id: str, session: AsyncSession = SessionDep):
    thumbnails = await list_thumbnails(session, post_id)
    return [ThumbnailRead.model_validate(t) for t in thumbnails]


@router.post("/{post_id}/thumbnails/reindex", response_model=ReindexResultRead)
async def reindex_post_thumbnails(post_id: str, request: ReindexRequest, session: AsyncSession = SessionDep):
    """Re-link thumbnails after the article's sections were reordered or removed."""
    try:
        result = await reindex(session, post_id, request.content)
    except QueueValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return ReindexResultRead(**result.to_dict())
