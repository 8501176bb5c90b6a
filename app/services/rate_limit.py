from __future__ import annotations

import logging
from datetime import timedelta

from app.services.token_code_store import TokenCodeStore
from app.services.token_codes import Clock, TokenCodeType, default_clock

_LOG = logging.getLogger("app.rate_limit")

WINDOW = timedelta(hours=1)


class RateLimiter:
    """Abuse detection over the issued-code history of one realm."""

    def __init__(self, store: TokenCodeStore, clock: Clock = default_clock):
        self.store = store
        self.clock = clock

    def is_abusing(self, phone_number: str, code_type: TokenCodeType, hour_maximum: int) -> bool:
        since = self.clock() - WINDOW
        issued = self.store.count_since(phone_number, code_type, since)
        if issued > hour_maximum:
            _LOG.warning(
                "Phone %s requested %s %s codes within the last hour (max %s)",
                phone_number,
                issued,
                TokenCodeType(code_type).label,
                hour_maximum,
            )
            return True
        return False
