"""
Bot detection utilities, framework-agnostic.

Combines two detection methods:
1. ``crawlerdetect`` library (signature-based)
2. a fixed list of case-insensitive substrings covering crawlers, search
   engines, social previewers and scripted HTTP clients
"""

from __future__ import annotations

import re
from functools import lru_cache
from typing import Optional

from crawlerdetect import CrawlerDetect

BOT_PATTERNS: tuple[str, ...] = (
    "bot",
    "crawl",
    "spider",
    "scrape",
    "google",
    "bing",
    "yahoo",
    "baidu",
    "facebook",
    "twitter",
    "linkedin",
    "curl",
    "wget",
    "postman",
)

_BOT_REGEX = re.compile("|".join(BOT_PATTERNS), re.IGNORECASE)


@lru_cache(maxsize=4096)
def _crawler_match(user_agent: str) -> Optional[str]:
    """Cached CrawlerDetect lookup; returns the matched signature or None."""
    detector = CrawlerDetect(user_agent=user_agent)
    if not detector.isCrawler():
        return None
    matches = detector.getMatches()
    return str(matches) if matches else "crawler"


def is_bot_request(user_agent: Optional[str]) -> bool:
    """Return True if *user_agent* looks like an automated crawler or client.

    An absent user agent is not treated as a bot.
    """
    if not user_agent:
        return False
    if _BOT_REGEX.search(user_agent):
        return True
    return _crawler_match(user_agent) is not None


def get_bot_name(user_agent: Optional[str]) -> Optional[str]:
    """Return the matched pattern or crawler signature, or None for humans."""
    if not user_agent:
        return None
    match = _BOT_REGEX.search(user_agent)
    if match:
        return match.group(0).lower()
    return _crawler_match(user_agent)
