from __future__ import annotations

from datetime import UTC, datetime, timedelta

from fastapi import (
    APIRouter,
    Depends,
    File,
    Header,
    Query,
    Request,
    Response,
    UploadFile,
    status,
)

from ..core.config import Settings
from ..core.errors import RateLimitError, ValidationError
from ..core.security import Principal, resolve_principal
from ..schemas.journal import (
    Attachment,
    JournalCreate,
    JournalEntry,
    JournalSearchResponse,
    JournalUpdate,
    SearchFilters,
    SentimentTrendsResponse,
    TopicAnalysisResponse,
)
from ..services.journal import DEFAULT_SEARCH_LIMIT, JournalService
from ..services.ratelimit import RateLimiter

router = APIRouter(
    prefix="/journals",
    tags=["journals"],
    dependencies=[Depends(resolve_principal)],
)

TREND_WINDOW = timedelta(days=30)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_journal_service(request: Request) -> JournalService:
    return request.app.state.journal_service


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


WRITE_WINDOW_SECONDS = 60


def _enforce_write_limit(limiter: RateLimiter, settings: Settings, principal: Principal) -> None:
    key = f"journal-write:{principal.id}"
    if not limiter.allow(key, limit=settings.write_rate_limit, window_seconds=WRITE_WINDOW_SECONDS):
        raise RateLimitError(
            "rate limited",
            retry_after=limiter.retry_after(key, WRITE_WINDOW_SECONDS),
        )


def _owner_for_write(body_user_id: str | None, principal: Principal, settings: Settings) -> str:
    if settings.trust_client_user_id:
        return body_user_id or principal.id
    if body_user_id is not None and body_user_id != principal.id:
        raise ValidationError("userId does not match the authenticated user")
    return principal.id


def _owner_for_list(
    query_user_id: str | None, principal: Principal, settings: Settings
) -> str | None:
    if settings.trust_client_user_id:
        return query_user_id
    if query_user_id is not None and query_user_id != principal.id:
        raise ValidationError("userId does not match the authenticated user")
    return principal.id


def _split_tags(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [tag.strip() for tag in raw.split(",") if tag.strip()]


def _set_etag(response: Response, entry: JournalEntry) -> None:
    if entry.etag:
        response.headers["ETag"] = f'"{entry.etag}"'


@router.post("", response_model=JournalEntry, status_code=status.HTTP_201_CREATED)
async def create_journal_entry(
    payload: JournalCreate,
    response: Response,
    principal: Principal = Depends(resolve_principal),
    service: JournalService = Depends(get_journal_service),
    limiter: RateLimiter = Depends(get_rate_limiter),
    settings: Settings = Depends(get_settings),
) -> JournalEntry:
    _enforce_write_limit(limiter, settings, principal)
    entry = await service.create(
        user_id=_owner_for_write(payload.user_id, principal, settings),
        content=payload.content,
        content_format=payload.content_format,
        tags=payload.tags,
        attachments=payload.attachments,
    )
    _set_etag(response, entry)
    return entry


@router.get("", response_model=list[JournalEntry])
async def list_journal_entries(
    principal: Principal = Depends(resolve_principal),
    service: JournalService = Depends(get_journal_service),
    settings: Settings = Depends(get_settings),
    user_id: str | None = Query(default=None, alias="userId"),
    limit: int | None = Query(default=None, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
) -> list[JournalEntry]:
    owner = _owner_for_list(user_id, principal, settings)
    return await service.list(owner, limit=limit, offset=offset)


@router.get("/search", response_model=JournalSearchResponse)
async def search_journal_entries(
    principal: Principal = Depends(resolve_principal),
    service: JournalService = Depends(get_journal_service),
    q: str = Query(..., min_length=1),
    date_from: datetime | None = Query(default=None, alias="dateFrom"),
    date_to: datetime | None = Query(default=None, alias="dateTo"),
    tags: str | None = Query(default=None),
    sentiment_min: float | None = Query(default=None, ge=0.0, le=1.0, alias="sentimentMin"),
    sentiment_max: float | None = Query(default=None, ge=0.0, le=1.0, alias="sentimentMax"),
    limit: int = Query(default=DEFAULT_SEARCH_LIMIT, ge=1, le=100),
    cursor: str | None = Query(default=None),
) -> JournalSearchResponse:
    filters = SearchFilters(
        date_from=date_from,
        date_to=date_to,
        tags=_split_tags(tags),
        sentiment_min=sentiment_min,
        sentiment_max=sentiment_max,
    )
    return await service.search(principal.id, q, filters, limit=limit, cursor=cursor)


@router.get("/insights/sentiment-trends", response_model=SentimentTrendsResponse)
async def sentiment_trends(
    principal: Principal = Depends(resolve_principal),
    service: JournalService = Depends(get_journal_service),
    start_date: datetime | None = Query(default=None, alias="startDate"),
    end_date: datetime | None = Query(default=None, alias="endDate"),
) -> SentimentTrendsResponse:
    end = end_date or datetime.now(UTC)
    start = start_date or end - TREND_WINDOW
    return await service.sentiment_trends(principal.id, start, end)


@router.get("/insights/topic-analysis", response_model=TopicAnalysisResponse)
async def topic_analysis(
    principal: Principal = Depends(resolve_principal),
    service: JournalService = Depends(get_journal_service),
    start_date: datetime | None = Query(default=None, alias="startDate"),
    end_date: datetime | None = Query(default=None, alias="endDate"),
) -> TopicAnalysisResponse:
    end = end_date or datetime.now(UTC)
    start = start_date or end - TREND_WINDOW
    return await service.topic_analysis(principal.id, start, end)


@router.post("/attachments", response_model=Attachment, status_code=status.HTTP_201_CREATED)
async def upload_attachment(
    file: UploadFile = File(...),
    principal: Principal = Depends(resolve_principal),
    service: JournalService = Depends(get_journal_service),
    limiter: RateLimiter = Depends(get_rate_limiter),
    settings: Settings = Depends(get_settings),
) -> Attachment:
    _enforce_write_limit(limiter, settings, principal)
    data = await file.read()
    return await service.upload_attachment(
        user_id=principal.id,
        file_name=file.filename or "attachment",
        content_type=file.content_type or "application/octet-stream",
        data=data,
    )


@router.get("/{entry_id}", response_model=JournalEntry)
async def get_journal_entry(
    entry_id: str,
    response: Response,
    principal: Principal = Depends(resolve_principal),
    service: JournalService = Depends(get_journal_service),
) -> JournalEntry:
    entry = await service.get(entry_id, principal.id)
    _set_etag(response, entry)
    return entry


@router.put("/{entry_id}", response_model=JournalEntry)
async def update_journal_entry(
    entry_id: str,
    payload: JournalUpdate,
    response: Response,
    principal: Principal = Depends(resolve_principal),
    service: JournalService = Depends(get_journal_service),
    limiter: RateLimiter = Depends(get_rate_limiter),
    settings: Settings = Depends(get_settings),
    if_match: str | None = Header(default=None, alias="If-Match"),
) -> JournalEntry:
    _enforce_write_limit(limiter, settings, principal)
    etag = if_match.strip().removeprefix("W/").strip('"') if if_match else None
    entry = await service.update(entry_id, principal.id, payload, if_match=etag or None)
    _set_etag(response, entry)
    return entry


@router.delete("/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_journal_entry(
    entry_id: str,
    principal: Principal = Depends(resolve_principal),
    service: JournalService = Depends(get_journal_service),
) -> Response:
    await service.delete(entry_id, principal.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
