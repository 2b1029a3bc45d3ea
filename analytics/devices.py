from __future__ import annotations

from enum import Enum
from typing import Iterable, Optional, Protocol, Sequence, Tuple

from config.constants import DESKTOP_KEYWORDS, MOBILE_KEYWORDS, TABLET_KEYWORDS


class DeviceCategory(str, Enum):
    """Device buckets reported in the device distribution."""
    MOBILE = "mobile"
    TABLET = "tablet"
    DESKTOP = "desktop"
    UNKNOWN = "unknown"


class DeviceClassifier(Protocol):
    """Anything that can place a user agent into a device bucket."""

    def classify(self, user_agent: Optional[str]) -> DeviceCategory:
        ...


class KeywordDeviceClassifier:
    """Case-insensitive substring sniffing of user-agent strings.

    Categories are checked in order (mobile, tablet, desktop) and the first
    matching keyword wins, so ``"Linux; Android ... Mobile"`` is mobile.
    """

    def __init__(
        self,
        mobile: Sequence[str] = MOBILE_KEYWORDS,
        tablet: Sequence[str] = TABLET_KEYWORDS,
        desktop: Sequence[str] = DESKTOP_KEYWORDS,
    ) -> None:
        self.rules: Tuple[Tuple[DeviceCategory, Tuple[str, ...]], ...] = (
            (DeviceCategory.MOBILE, _lowered(mobile)),
            (DeviceCategory.TABLET, _lowered(tablet)),
            (DeviceCategory.DESKTOP, _lowered(desktop)),
        )

    def classify(self, user_agent: Optional[str]) -> DeviceCategory:
        if not user_agent:
            return DeviceCategory.UNKNOWN
        ua = user_agent.lower()
        for category, keywords in self.rules:
            if any(keyword in ua for keyword in keywords):
                return category
        return DeviceCategory.UNKNOWN


def _lowered(keywords: Iterable[str]) -> Tuple[str, ...]:
    return tuple(k.lower() for k in keywords)


default_classifier = KeywordDeviceClassifier()
