"""
Referrer helpers: UTM campaign attribution and referrer domain classification.
"""

from __future__ import annotations

from typing import Optional
from urllib.parse import parse_qs, urlsplit

import tldextract

tld_extractor = tldextract.TLDExtract(cache_dir=None)

CAMPAIGN_PARAMS: dict[str, str] = {
    "utm_source": "source",
    "utm_medium": "medium",
    "utm_campaign": "campaign",
    "utm_term": "term",
    "utm_content": "content",
}

SEARCH_ENGINES = ("google.", "bing.com", "yahoo.com", "duckduckgo.com", "baidu.com")
SOCIAL_NETWORKS = (
    "facebook.com",
    "twitter.com",
    "x.com",
    "t.co",
    "linkedin.com",
    "instagram.com",
    "reddit.com",
)

DIRECT = "Direct"


def _split_absolute(url: Optional[str]):
    if not url:
        return None
    try:
        parts = urlsplit(url.strip())
    except ValueError:
        return None
    if not parts.scheme or not parts.netloc:
        return None
    return parts


def extract_campaign(referrer: Optional[str]) -> Optional[dict[str, str]]:
    """Read the UTM parameters from an absolute referrer URL.

    Returns None when the referrer is absent, not an absolute URL, or carries
    no UTM parameter. Present-but-empty parameters are kept as "".

    Example:
        >>> extract_campaign("https://news.example/a?utm_source=nl&utm_medium=email")
        {'source': 'nl', 'medium': 'email'}
    """
    parts = _split_absolute(referrer)
    if parts is None:
        return None
    params = parse_qs(parts.query, keep_blank_values=True)
    campaign = {
        field: params[param][0]
        for param, field in CAMPAIGN_PARAMS.items()
        if param in params
    }
    return campaign or None


def extract_domain(referrer: Optional[str]) -> str:
    """Registered domain of a referrer URL, or "Direct" when it has none."""
    parts = _split_absolute(referrer)
    if parts is None:
        return DIRECT
    raw = tld_extractor(parts.netloc)
    if not raw.domain:
        return parts.hostname or DIRECT
    return f"{raw.domain}.{raw.suffix}" if raw.suffix else raw.domain


def classify_referrer(domain: str) -> str:
    """Bucket a referrer domain into search, social or referral."""
    lowered = domain.lower()
    if any(engine in lowered for engine in SEARCH_ENGINES):
        return "search"
    if any(lowered == network or lowered.endswith("." + network) for network in SOCIAL_NETWORKS):
        return "social"
    return "referral"
