"""
Redirect endpoints: the click ingestion entry points.

GET /{short_code}          records the click and answers 302 to the long URL
GET /{short_code}/track    same, with UTM and tracking parameters taken from
                           the query string and forwarded to the long URL
GET /{short_code}/stats    public counters of one link

The event write and counter increment happen before the redirect response.
Live statistics are recomputed and pushed to subscribers after the response
has been sent.

Browser-supplied headers and cookies are clamped to the event limits here so
an oversized Referer never turns a redirect into a 400.

This router has a catch-all path and must be included last.
"""

from __future__ import annotations

from typing import Any, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from bson import ObjectId
from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from fastapi.responses import RedirectResponse

from dependencies import (
    get_analytics_service,
    get_broadcaster,
    get_ingestion_service,
    get_url_repository,
)
from errors import NotFoundError
from repositories.url_repository import UrlRepository
from schemas.dto.requests.analytics import ClickSubmission, parse_request
from schemas.dto.responses.analytics import PublicUrlStats
from schemas.models.click import (
    MAX_REFERRER_LENGTH,
    MAX_SESSION_ID_LENGTH,
    MAX_USER_AGENT_LENGTH,
)
from schemas.models.url import UrlDoc
from services.analytics_service import AnalyticsService
from services.click_service import ClickIngestionService
from services.realtime import RealtimeBroadcaster
from shared.datetime_utils import utc_now
from shared.ip_utils import PROXY_HEADERS
from shared.logging import get_logger

log = get_logger(__name__)

router = APIRouter(tags=["redirect"])

SESSION_COOKIE = "session_id"
VISITOR_COOKIE = "visitor_id"

UTM_PARAMS = ("utm_source", "utm_medium", "utm_campaign", "utm_term", "utm_content")


def primary_language(accept_language: Optional[str]) -> Optional[str]:
    """First language tag of an Accept-Language header ("en-US,en;q=0.9" → "en-US")."""
    if not accept_language:
        return None
    tag = accept_language.split(",")[0].split(";")[0].strip()
    return tag[:10] or None


def _clamp(value: Optional[str], limit: int) -> Optional[str]:
    return value[:limit] if value else value


def build_submission_data(
    request: Request, url_id: ObjectId, referrer: Optional[str] = None
) -> dict[str, Any]:
    headers = {
        name: request.headers[name] for name in PROXY_HEADERS if name in request.headers
    }
    visitor_id = request.cookies.get(VISITOR_COOKIE)
    session_id = request.cookies.get(SESSION_COOKIE)
    if session_id and len(session_id) > MAX_SESSION_ID_LENGTH:
        session_id = None
    return {
        "url_id": url_id,
        "ip_address": request.client.host if request.client else None,
        "headers": headers,
        "user_agent": _clamp(request.headers.get("user-agent"), MAX_USER_AGENT_LENGTH),
        "referrer": _clamp(referrer or request.headers.get("referer"), MAX_REFERRER_LENGTH),
        "session_id": session_id,
        "visitor_id": visitor_id if visitor_id and ObjectId.is_valid(visitor_id) else None,
        "language": primary_language(request.headers.get("accept-language")),
    }


def with_query_params(url: str, params: dict[str, str]) -> str:
    """Set *params* on the query string of *url*, replacing existing values."""
    if not params:
        return url
    parts = urlsplit(url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k not in params]
    query.extend(params.items())
    return urlunsplit(parts._replace(query=urlencode(query)))


async def _find_url(urls: UrlRepository, short_code: str) -> UrlDoc:
    url = await urls.find_by_short_code(short_code)
    if url is None:
        log.info("redirect_not_found", short_code=short_code)
        raise NotFoundError("short url not found", details={"short_code": short_code})
    return url


@router.get("/{short_code}/stats", response_model=PublicUrlStats)
async def public_stats(
    short_code: str,
    analytics: AnalyticsService = Depends(get_analytics_service),
) -> PublicUrlStats:
    return await analytics.get_public_stats(short_code)


@router.get("/{short_code}/track", response_class=RedirectResponse, status_code=302)
async def tracked_redirect(
    short_code: str,
    request: Request,
    background_tasks: BackgroundTasks,
    utm_source: Optional[str] = Query(None),
    utm_medium: Optional[str] = Query(None),
    utm_campaign: Optional[str] = Query(None),
    utm_term: Optional[str] = Query(None),
    utm_content: Optional[str] = Query(None),
    ref: Optional[str] = Query(None, description="referrer override"),
    track_id: Optional[str] = Query(None),
    urls: UrlRepository = Depends(get_url_repository),
    ingestion: ClickIngestionService = Depends(get_ingestion_service),
    broadcaster: RealtimeBroadcaster = Depends(get_broadcaster),
) -> RedirectResponse:
    url = await _find_url(urls, short_code)

    utm = {
        name: value
        for name, value in zip(
            UTM_PARAMS, (utm_source, utm_medium, utm_campaign, utm_term, utm_content)
        )
        if value
    }
    custom_data: dict[str, Any] = dict(utm)
    if track_id:
        custom_data["tracking_id"] = track_id
    custom_data["tracking_timestamp"] = utc_now()

    data = build_submission_data(request, url.id, referrer=ref)
    data["custom_data"] = custom_data
    result = await ingestion.record_click(parse_request(ClickSubmission, data))

    background_tasks.add_task(broadcaster.publish_click_update, url.id, url.short_code)
    return RedirectResponse(url=with_query_params(result.redirect_url, utm), status_code=302)


@router.get("/{short_code}", response_class=RedirectResponse, status_code=302)
async def redirect_short_url(
    short_code: str,
    request: Request,
    background_tasks: BackgroundTasks,
    urls: UrlRepository = Depends(get_url_repository),
    ingestion: ClickIngestionService = Depends(get_ingestion_service),
    broadcaster: RealtimeBroadcaster = Depends(get_broadcaster),
) -> RedirectResponse:
    url = await _find_url(urls, short_code)

    submission = parse_request(ClickSubmission, build_submission_data(request, url.id))
    result = await ingestion.record_click(submission)

    background_tasks.add_task(broadcaster.publish_click_update, url.id, url.short_code)
    return RedirectResponse(url=result.redirect_url, status_code=302)
