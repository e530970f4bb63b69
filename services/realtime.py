"""
Realtime broadcaster.

Keeps a process-local map of topic → subscribers and pushes freshly computed
short-window statistics to them. Topics:

  url:<short_code>   per-link live counters ("realtime:update")
  real-time          platform-wide live view ("real-time:analytics")

Fan-out is concurrent with a per-subscriber timeout. A subscriber whose send
fails is dropped; a slow one only misses that message. Nothing here is
persisted or retried: publish_click_update() runs after the redirect response
and logs every failure instead of raising.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Any, Hashable, Protocol

from bson import ObjectId

from errors import BroadcastError, NotFoundError, ValidationError
from services.analytics_service import AnalyticsService
from shared.logging import get_logger, should_sample

log = get_logger(__name__)

GLOBAL_TOPIC = "real-time"
URL_TOPIC_PREFIX = "url:"

URL_UPDATE_EVENT = "realtime:update"
GLOBAL_UPDATE_EVENT = "real-time:analytics"
URL_CURRENT_EVENT = "realtime:current"
ERROR_EVENT = "real-time:error"


def url_topic(short_code: str) -> str:
    return f"{URL_TOPIC_PREFIX}{short_code}"


def validate_topic(topic: str) -> str:
    if topic == GLOBAL_TOPIC:
        return topic
    if topic.startswith(URL_TOPIC_PREFIX) and len(topic) > len(URL_TOPIC_PREFIX):
        return topic
    raise ValidationError(f"unknown topic: {topic!r}", field="topic")


class Subscriber(Hashable, Protocol):
    async def send_json(self, data: Any) -> None: ...


def _message(event: str, topic: str, data: Any) -> dict[str, Any]:
    return {"event": event, "topic": topic, "data": data}


class RealtimeBroadcaster:
    def __init__(self, analytics: AnalyticsService, send_timeout: float = 2.0) -> None:
        self._analytics = analytics
        self._send_timeout = send_timeout
        self._topics: dict[str, set[Subscriber]] = defaultdict(set)
        self._memberships: dict[Subscriber, set[str]] = defaultdict(set)
        self._closed = False

    # ── subscriptions ────────────────────────────────────────────────────────

    def subscribe(self, subscriber: Subscriber, topic: str) -> None:
        topic = validate_topic(topic)
        if self._closed:
            log.warning("realtime_subscribe_after_shutdown", topic=topic)
            return
        self._topics[topic].add(subscriber)
        self._memberships[subscriber].add(topic)
        log.debug("realtime_subscribed", topic=topic, subscribers=len(self._topics[topic]))

    def unsubscribe(self, subscriber: Subscriber, topic: str) -> None:
        members = self._topics.get(topic)
        if members is not None:
            members.discard(subscriber)
            if not members:
                del self._topics[topic]
        topics = self._memberships.get(subscriber)
        if topics is not None:
            topics.discard(topic)
            if not topics:
                del self._memberships[subscriber]

    def disconnect(self, subscriber: Subscriber) -> None:
        """Drop *subscriber* from every topic."""
        for topic in list(self._memberships.get(subscriber, ())):
            self.unsubscribe(subscriber, topic)

    def subscribers(self, topic: str) -> frozenset:
        return frozenset(self._topics.get(topic, ()))

    def topics_for(self, subscriber: Subscriber) -> frozenset:
        return frozenset(self._memberships.get(subscriber, ()))

    def has_subscribers(self, topic: str) -> bool:
        return bool(self._topics.get(topic))

    def stats(self) -> dict[str, int]:
        return {"topics": len(self._topics), "subscribers": len(self._memberships)}

    # ── delivery ─────────────────────────────────────────────────────────────

    async def _deliver(self, subscriber: Subscriber, message: dict[str, Any]) -> None:
        try:
            await asyncio.wait_for(subscriber.send_json(message), self._send_timeout)
        except asyncio.TimeoutError as e:
            raise BroadcastError("subscriber send timed out") from e
        except Exception as e:
            raise BroadcastError("subscriber send failed") from e

    async def publish(self, topic: str, event: str, payload: Any) -> int:
        """Send one message to every subscriber of *topic*; returns deliveries."""
        recipients = list(self._topics.get(topic, ()))
        if not recipients or self._closed:
            return 0

        message = _message(event, topic, payload)
        results = await asyncio.gather(
            *(self._deliver(subscriber, message) for subscriber in recipients),
            return_exceptions=True,
        )

        delivered = 0
        for subscriber, result in zip(recipients, results):
            if result is None:
                delivered += 1
                continue
            timed_out = isinstance(result.__cause__, asyncio.TimeoutError)
            log.warning(
                "realtime_delivery_failed",
                topic=topic,
                timed_out=timed_out,
                error=str(result),
                cause=type(result.__cause__).__name__ if result.__cause__ else None,
            )
            if not timed_out:
                self.disconnect(subscriber)

        if should_sample("realtime_broadcast"):
            log.info(
                "realtime_broadcast",
                topic=topic,
                event=event,
                recipients=len(recipients),
                delivered=delivered,
            )
        return delivered

    async def publish_click_update(self, url_id: ObjectId, short_code: str) -> None:
        """Recompute and push live stats after a click. Never raises."""
        topic = url_topic(short_code)
        if self.has_subscribers(topic):
            try:
                stats = await self._analytics.get_url_realtime_stats(url_id, short_code)
                await self.publish(topic, URL_UPDATE_EVENT, stats.model_dump(mode="json"))
            except Exception as e:
                log.error(
                    "realtime_url_update_failed",
                    short_code=short_code,
                    error=str(e),
                    error_type=type(e).__name__,
                )

        if self.has_subscribers(GLOBAL_TOPIC):
            try:
                snapshot = await self._analytics.get_global_realtime_snapshot()
                await self.publish(
                    GLOBAL_TOPIC, GLOBAL_UPDATE_EVENT, snapshot.model_dump(mode="json")
                )
            except Exception as e:
                log.error(
                    "realtime_global_update_failed",
                    error=str(e),
                    error_type=type(e).__name__,
                )

    async def current_snapshot(self, topic: str) -> dict[str, Any]:
        """Pull-on-demand: the message a subscriber of *topic* would receive now."""
        topic = validate_topic(topic)
        if topic == GLOBAL_TOPIC:
            snapshot = await self._analytics.get_global_realtime_snapshot()
            return _message(GLOBAL_UPDATE_EVENT, topic, snapshot.model_dump(mode="json"))

        short_code = topic[len(URL_TOPIC_PREFIX):]
        url = await self._analytics.find_url_by_short_code(short_code)
        if url is None:
            raise NotFoundError("short url not found", details={"short_code": short_code})
        stats = await self._analytics.get_url_realtime_stats(url.id, short_code)
        return _message(URL_CURRENT_EVENT, topic, stats.model_dump(mode="json"))

    # ── lifecycle ────────────────────────────────────────────────────────────

    async def shutdown(self) -> None:
        """Stop delivering and forget every subscription."""
        self._closed = True
        dropped = len(self._memberships)
        self._topics.clear()
        self._memberships.clear()
        log.info("realtime_broadcaster_shutdown", subscribers_dropped=dropped)
