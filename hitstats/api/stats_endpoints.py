"""
Stats Service Endpoints

REST API of the stats server. Endpoints only handle:
- Request parsing (Pydantic models, query parameters)
- Rate limiting
- Delegating to HitService

Validation errors (StatsValidationError, RequestValidationError) are
turned into 400 responses by the handlers in hitstats.api.errors.
"""

from typing import Any, Optional

from fastapi import APIRouter, BackgroundTasks, Body, Depends, Query, Request, status
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hitstats.api.schemas import HitRecord, ViewStat
from hitstats.core.rate_limit import RATE_LIMITS, limiter
from hitstats.core.setting import settings
from hitstats.core.validators import parse_timestamp
from hitstats.db.session import get_session, get_session_maker
from hitstats.services.background_tasks import save_hit_background
from hitstats.services.hit_service import HitService

router = APIRouter()


@router.post(
    "/hit",
    status_code=status.HTTP_201_CREATED,
    summary="Record a hit",
)
@limiter.limit(RATE_LIMITS["hit"])
async def create_hit(
    request: Request,  # Required for rate limiting (slowapi expects parameter named 'request')
    body: HitRecord,
    session: AsyncSession = Depends(get_session),
) -> Response:
    await HitService(session).create_hit(body)
    return Response(status_code=status.HTTP_201_CREATED)


@router.post(
    "/hit/async",
    status_code=status.HTTP_202_ACCEPTED,
    summary="Record a hit after the response is sent",
)
@limiter.limit(RATE_LIMITS["hit"])
async def create_hit_async(
    request: Request,
    body: HitRecord,
    background_tasks: BackgroundTasks,
    session_factory: async_sessionmaker = Depends(get_session_maker),
) -> Response:
    background_tasks.add_task(save_hit_background, session_factory, body)
    return Response(status_code=status.HTTP_202_ACCEPTED)


@router.post(
    "/hit/batch",
    status_code=status.HTTP_201_CREATED,
    summary="Record a batch of hits",
    description="Items are validated and saved one by one; invalid items are skipped and logged",
)
@limiter.limit(RATE_LIMITS["hit"])
async def create_hits_batch(
    request: Request,
    hits: list[Any] = Body(...),
    session: AsyncSession = Depends(get_session),
) -> Response:
    await HitService(session).create_hits_batch(hits)
    return Response(status_code=status.HTTP_201_CREATED)


@router.get(
    "/stats",
    response_model=list[ViewStat],
    summary="Hit statistics per (app, uri)",
)
@limiter.limit(RATE_LIMITS["stats"])
async def get_stats(
    request: Request,
    start: str = Query(..., description="'yyyy-MM-dd HH:mm:ss'"),
    end: str = Query(..., description="'yyyy-MM-dd HH:mm:ss'"),
    uris: Optional[list[str]] = Query(default=None),
    unique: bool = Query(default=False),
    session: AsyncSession = Depends(get_session),
) -> list[ViewStat]:
    return await HitService(session).get_stats(
        parse_timestamp(start, "start"),
        parse_timestamp(end, "end"),
        uris,
        unique,
    )


@router.get("/stats/total", response_model=int, summary="Total hits in a window")
@limiter.limit(RATE_LIMITS["stats"])
async def get_total_hits(
    request: Request,
    start: str = Query(...),
    end: str = Query(...),
    session: AsyncSession = Depends(get_session),
) -> int:
    return await HitService(session).get_total_hits(
        parse_timestamp(start, "start"), parse_timestamp(end, "end")
    )


@router.get("/stats/unique", response_model=int, summary="Distinct client IPs in a window")
@limiter.limit(RATE_LIMITS["stats"])
async def get_unique_hits(
    request: Request,
    start: str = Query(...),
    end: str = Query(...),
    session: AsyncSession = Depends(get_session),
) -> int:
    return await HitService(session).get_unique_hits(
        parse_timestamp(start, "start"), parse_timestamp(end, "end")
    )


@router.delete(
    "/stats/cleanup",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete hits older than daysToKeep days",
)
@limiter.limit(RATE_LIMITS["cleanup"])
async def cleanup_old_hits(
    request: Request,
    days_to_keep: int = Query(default=settings.DEFAULT_DAYS_TO_KEEP, alias="daysToKeep"),
    session: AsyncSession = Depends(get_session),
) -> Response:
    await HitService(session).cleanup_old_hits(days_to_keep)
    return Response(status_code=status.HTTP_204_NO_CONTENT)

