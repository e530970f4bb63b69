"""
Click enrichment stage.

Derives the location, device, bot flag and campaign facts for one click.
Steps run in a fixed order; a failing step is logged and leaves its field
at the default, so enrichment never fails a click.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, Protocol

from schemas.dto.requests.analytics import ClickSubmission
from schemas.models.click import CampaignInfo, DeviceInfo, LocationInfo, ScreenResolution
from shared.bot_detection import get_bot_name, is_bot_request
from shared.device_detection import classify_user_agent
from shared.logging import get_logger, hash_ip
from shared.referrers import CAMPAIGN_PARAMS, extract_campaign

log = get_logger(__name__)


class GeoLocator(Protocol):
    async def lookup(self, ip_address: str) -> Optional[LocationInfo]: ...


@dataclass
class Enrichment:
    location: Optional[LocationInfo] = None
    device: DeviceInfo = field(default_factory=DeviceInfo)
    is_bot: bool = False
    campaign: Optional[CampaignInfo] = None


Step = Callable[[Enrichment, str, ClickSubmission], Awaitable[None]]


class ClickEnricher:
    def __init__(self, geolocator: GeoLocator) -> None:
        self._geolocator = geolocator
        self._steps: tuple[tuple[str, Step], ...] = (
            ("geolocation", self._geolocate),
            ("device", self._classify_device),
            ("bot", self._detect_bot),
            ("campaign", self._extract_campaign),
        )

    @property
    def step_names(self) -> tuple[str, ...]:
        return tuple(name for name, _ in self._steps)

    async def enrich(self, ip_address: str, submission: ClickSubmission) -> Enrichment:
        result = Enrichment()
        for name, step in self._steps:
            try:
                await step(result, ip_address, submission)
            except Exception as e:
                log.warning(
                    "enrichment_step_failed",
                    step=name,
                    url_id=str(submission.url_id),
                    ip_hash=hash_ip(ip_address),
                    error=str(e),
                    error_type=type(e).__name__,
                )
        return result

    async def _geolocate(
        self, result: Enrichment, ip_address: str, submission: ClickSubmission
    ) -> None:
        result.location = await self._geolocator.lookup(ip_address)

    async def _classify_device(
        self, result: Enrichment, ip_address: str, submission: ClickSubmission
    ) -> None:
        info = classify_user_agent(submission.user_agent)
        screen = None
        if submission.screen_width is not None and submission.screen_height is not None:
            screen = ScreenResolution(
                width=submission.screen_width, height=submission.screen_height
            )
        result.device = DeviceInfo(
            type=info.device_type,
            browser=info.browser,
            browser_version=info.browser_version,
            engine=info.engine,
            os=info.os,
            os_version=info.os_version,
            screen_resolution=screen,
            language=submission.language,
        )

    async def _detect_bot(
        self, result: Enrichment, ip_address: str, submission: ClickSubmission
    ) -> None:
        result.is_bot = is_bot_request(submission.user_agent)
        if result.is_bot:
            log.debug(
                "bot_click_detected",
                url_id=str(submission.url_id),
                bot=get_bot_name(submission.user_agent),
            )

    async def _extract_campaign(
        self, result: Enrichment, ip_address: str, submission: ClickSubmission
    ) -> None:
        campaign = extract_campaign(submission.referrer)
        if campaign is None:
            # Tracked redirects carry UTM values in custom_data
            campaign = {
                name: str(submission.custom_data[param])
                for param, name in CAMPAIGN_PARAMS.items()
                if param in submission.custom_data
            } or None
        result.campaign = CampaignInfo(**campaign) if campaign else None
