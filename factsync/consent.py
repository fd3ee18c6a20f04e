"""Analytics sharing opt-in check."""

import logging
from typing import Optional

from .errors import ConsentDisabled
from .ports import KeyValueStore

logger = logging.getLogger(__name__)

SHARE_ANALYTICS_KEY = "shareAnalytics"


class ConsentGate:
    """Reads the ``shareAnalytics`` flag before any network activity.

    The flag lives in the host's settings store and may flip at any time, so
    it is read fresh on every check. An explicit ``False`` disables sharing;
    a missing value falls back to ``default``. If the settings cannot be read
    the gate stays closed.
    """

    def __init__(self, settings: Optional[KeyValueStore] = None, default: bool = True):
        self.settings = settings
        self.default = default

    def is_enabled(self) -> bool:
        if self.settings is None:
            return self.default
        try:
            value = self.settings.get([SHARE_ANALYTICS_KEY]).get(SHARE_ANALYTICS_KEY)
        except Exception as exc:
            logger.warning("Could not read analytics consent, treating as disabled: %s", exc)
            return False
        if value is None:
            return self.default
        return value is not False

    def require(self) -> None:
        if not self.is_enabled():
            raise ConsentDisabled("analytics sharing is disabled")
