"""
User-agent classification: device type, browser, OS and rendering engine.

Pure regex rules, evaluated in a fixed order where the first match wins.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

DEVICE_DESKTOP = "desktop"
DEVICE_MOBILE = "mobile"
DEVICE_TABLET = "tablet"
DEVICE_BOT = "bot"
DEVICE_UNKNOWN = "unknown"

DEVICE_TYPES = frozenset(
    {DEVICE_DESKTOP, DEVICE_MOBILE, DEVICE_TABLET, DEVICE_BOT, DEVICE_UNKNOWN}
)

_TABLET_RE = re.compile(r"(tablet|ipad|playbook|silk)|(android(?!.*mobi))", re.IGNORECASE)
_MOBILE_RE = re.compile(
    r"Mobile|Android|iP(hone|od)|IEMobile|BlackBerry|Kindle|Silk-Accelerated"
    r"|(hpw|web)OS|Opera M(obi|ini)"
)

# (name, version pattern, exclusion pattern)
_BROWSER_RULES: tuple[tuple[str, re.Pattern, Optional[re.Pattern]], ...] = (
    ("Edge", re.compile(r"Edg/([0-9.]+)"), None),
    ("Chrome", re.compile(r"Chrome/([0-9.]+)"), re.compile(r"Edg")),
    ("Safari", re.compile(r"Version/([0-9.]+).*Safari"), re.compile(r"Chrome")),
    ("Firefox", re.compile(r"Firefox/([0-9.]+)"), None),
    ("Opera", re.compile(r"(?:Opera|OPR)/([0-9.]+)"), None),
    ("IE", re.compile(r"(?:MSIE |rv:)([0-9.]+)"), None),
)

_WINDOWS_RE = re.compile(r"Windows NT ([0-9.]+)")
_MACOS_RE = re.compile(r"Mac OS X ([0-9_]+)")
_IOS_RE = re.compile(r"OS ([0-9_]+)")
_ANDROID_RE = re.compile(r"Android ([0-9.]+)")


@dataclass(frozen=True)
class UserAgentInfo:
    device_type: str
    browser: str  # name plus version, e.g. "Chrome 115.0"
    browser_version: Optional[str]
    os: str  # name plus version, e.g. "Windows 10/11"
    os_version: Optional[str]
    engine: Optional[str]


UNKNOWN_USER_AGENT = UserAgentInfo(
    device_type=DEVICE_UNKNOWN,
    browser="Unknown",
    browser_version=None,
    os="Unknown",
    os_version=None,
    engine=None,
)


def _with_version(name: str, version: Optional[str]) -> str:
    return f"{name} {version}" if version else name


def detect_device_type(user_agent: str) -> str:
    if _TABLET_RE.search(user_agent):
        return DEVICE_TABLET
    if _MOBILE_RE.search(user_agent):
        return DEVICE_MOBILE
    return DEVICE_DESKTOP


def detect_browser(user_agent: str) -> tuple[str, Optional[str]]:
    """Return (browser name, version) using the first matching rule."""
    for name, pattern, exclude in _BROWSER_RULES:
        if exclude is not None and exclude.search(user_agent):
            continue
        match = pattern.search(user_agent)
        if match:
            return name, match.group(1) or None
    return "Unknown", None


def detect_os(user_agent: str) -> tuple[str, Optional[str]]:
    """Return (OS name, version). Underscored versions are dotted."""
    if "Windows NT 10.0" in user_agent:
        return "Windows", "10/11"
    if "Windows NT" in user_agent:
        match = _WINDOWS_RE.search(user_agent)
        return "Windows", match.group(1) if match else None
    if "iPhone" in user_agent:
        match = _IOS_RE.search(user_agent)
        return "iOS", match.group(1).replace("_", ".") if match else None
    if "iPad" in user_agent:
        match = _IOS_RE.search(user_agent)
        return "iPadOS", match.group(1).replace("_", ".") if match else None
    if "Mac OS X" in user_agent:
        match = _MACOS_RE.search(user_agent)
        return "macOS", match.group(1).replace("_", ".") if match else None
    if "Android" in user_agent:
        match = _ANDROID_RE.search(user_agent)
        return "Android", match.group(1) if match else None
    if "Linux" in user_agent:
        return "Linux", None
    return "Unknown", None


def detect_engine(user_agent: str) -> Optional[str]:
    if "Trident/" in user_agent or "MSIE " in user_agent:
        return "Trident"
    if "Edg/" in user_agent or "Chrome/" in user_agent or "OPR/" in user_agent:
        return "Blink"
    if "Gecko/" in user_agent and "Firefox/" in user_agent:
        return "Gecko"
    if "AppleWebKit/" in user_agent:
        return "WebKit"
    return None


@lru_cache(maxsize=2048)
def classify_user_agent(user_agent: Optional[str]) -> UserAgentInfo:
    """Classify a user agent string.

    An absent or blank user agent yields UNKNOWN_USER_AGENT; any other string
    is at least a desktop device.
    """
    if not user_agent or not user_agent.strip():
        return UNKNOWN_USER_AGENT

    browser, browser_version = detect_browser(user_agent)
    os_name, os_version = detect_os(user_agent)
    return UserAgentInfo(
        device_type=detect_device_type(user_agent),
        browser=_with_version(browser, browser_version),
        browser_version=browser_version,
        os=_with_version(os_name, os_version),
        os_version=os_version,
        engine=detect_engine(user_agent),
    )
