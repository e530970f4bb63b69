"""
Click ingestion pipeline.

record_click() turns one redirect into a persisted, enriched click event and
an updated set of URL counters. Order per click:

  normalize IP → resolve URL → claim first visit → enrich → insert event
  → increment counters → owner statistics (best-effort)

Nothing is written when the URL is missing, inactive or expired. If the
event insert fails the first-visit marker is released and the counters are
left untouched.
"""

from __future__ import annotations

from typing import Optional

from bson import ObjectId

from errors import NotFoundError, StorageError
from repositories.protocol import ClickStore, OwnerStatsSink, UrlStore
from schemas.dto.requests.analytics import ClickSubmission
from schemas.dto.responses.analytics import LiveCounters, RecordClickResult
from schemas.models.click import ClickEventDoc
from services.enrichment import ClickEnricher
from shared.datetime_utils import utc_now
from shared.ip_utils import get_ip_source, normalize_ip
from shared.logging import get_logger, hash_ip, should_sample

log = get_logger(__name__)


class ClickIngestionService:
    def __init__(
        self,
        clicks: ClickStore,
        urls: UrlStore,
        enricher: ClickEnricher,
        owner_stats: Optional[OwnerStatsSink] = None,
    ) -> None:
        self._clicks = clicks
        self._urls = urls
        self._enricher = enricher
        self._owner_stats = owner_stats

    async def record_click(self, submission: ClickSubmission) -> RecordClickResult:
        ip_address = normalize_ip(submission.ip_address, submission.headers)
        log.debug(
            "client_ip_resolved",
            ip_hash=hash_ip(ip_address),
            source=get_ip_source(submission.ip_address, submission.headers),
        )

        url = await self._urls.find_by_id(submission.url_id)
        if url is None or not url.accepts_clicks:
            raise NotFoundError(
                "short url not found or expired",
                details={"url_id": str(submission.url_id)},
            )

        clicked_at = utc_now()
        is_unique = await self._clicks.claim_first_visit(url.id, ip_address, clicked_at)

        enrichment = await self._enricher.enrich(ip_address, submission)

        click = ClickEventDoc(
            url_id=url.id,
            short_code=url.short_code,
            visitor_id=submission.visitor_id,
            ip_address=ip_address,
            user_agent=submission.user_agent,
            referrer=submission.referrer,
            session_id=submission.session_id,
            custom_data=submission.custom_data,
            load_time=submission.load_time,
            location=enrichment.location,
            device=enrichment.device,
            is_bot=enrichment.is_bot,
            is_unique=is_unique,
            campaign=enrichment.campaign,
            clicked_at=clicked_at,
        )

        try:
            saved = await self._clicks.insert(click)
        except StorageError:
            if is_unique:
                await self._release_first_visit(url.id, ip_address)
            raise

        counters = await self._urls.increment_counters(
            url.id, unique=is_unique, clicked_at=clicked_at
        )

        if url.owner_id is not None:
            await self._add_owner_click(url.owner_id)

        if should_sample("click_recorded"):
            log.info(
                "click_recorded",
                short_code=url.short_code,
                ip_hash=hash_ip(ip_address),
                is_unique=is_unique,
                is_bot=enrichment.is_bot,
                country=enrichment.location.country if enrichment.location else None,
                total_clicks=counters.total_clicks,
            )

        return RecordClickResult(
            click=saved,
            redirect_url=url.long_url,
            counters=LiveCounters(
                total_clicks=counters.total_clicks,
                unique_clicks=counters.unique_clicks,
                is_unique=is_unique,
            ),
        )

    async def _release_first_visit(self, url_id: ObjectId, ip_address: str) -> None:
        try:
            await self._clicks.release_first_visit(url_id, ip_address)
        except StorageError as e:
            log.error(
                "visitor_release_failed",
                url_id=str(url_id),
                error=str(e),
                error_type=type(e).__name__,
            )

    async def _add_owner_click(self, owner_id: ObjectId) -> None:
        if self._owner_stats is None:
            return
        try:
            await self._owner_stats.add_clicks(owner_id, 1)
        except Exception as e:
            log.warning(
                "owner_stats_update_failed",
                owner_id=str(owner_id),
                error=str(e),
                error_type=type(e).__name__,
            )
