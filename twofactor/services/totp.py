"""TOTP (RFC 6238) code computation and verification on top of pyotp.

``compute_code`` exposes the raw counter for callers and tests; ``verify``
passes the injected clock to pyotp as ``for_time``.
"""

import logging
import re
from datetime import datetime

import pyotp

from twofactor.services.clock import Clock, ensure_aware, system_clock
from twofactor.services.secret_codec import decode_base32, encode_base32

logger = logging.getLogger(__name__)

TIME_STEP_SECONDS = 30
CODE_DIGITS = 6
DEFAULT_WINDOW = 2

_CODE_RE = re.compile(r"^[0-9]{6}$")


def counter_at(timestamp: float) -> int:
    return int(timestamp // TIME_STEP_SECONDS)


def _hotp(secret: str) -> pyotp.HOTP:
    # round-trip through the codec so lower case / spaces / padding are accepted
    # and a malformed secret raises ValueError here rather than deep in pyotp
    return pyotp.HOTP(encode_base32(decode_base32(secret)), digits=CODE_DIGITS)


def compute_code(secret: str, counter: int) -> str:
    return _hotp(secret).at(counter)


class TotpEngine:
    def __init__(self, clock: Clock | None = None, window: int = DEFAULT_WINDOW) -> None:
        self.clock = clock or system_clock
        self.window = window

    def current_counter(self, now: datetime | None = None) -> int:
        moment = now or self.clock.now()
        return counter_at(moment.timestamp())

    def now_code(self, secret: str) -> str:
        return compute_code(secret, self.current_counter())

    def verify(self, secret: str | None, code: str | None, window: int | None = None, now: datetime | None = None) -> bool:
        """Check ``code`` against the current step and ``window`` steps either side.

        Never raises: anything malformed is simply not a valid code.
        """
        if not secret or not isinstance(code, str) or not _CODE_RE.match(code):
            return False
        moment = ensure_aware(now or self.clock.now())
        steps = self.window if window is None else window
        # pyotp refuses negative counters, so the window is narrowed near the epoch
        steps = min(steps, counter_at(moment.timestamp()))
        try:
            totp = pyotp.TOTP(encode_base32(decode_base32(secret)), digits=CODE_DIGITS, interval=TIME_STEP_SECONDS)
            return totp.verify(code, for_time=moment, valid_window=steps)
        except (ValueError, TypeError) as e:
            logger.debug("TOTP verification failed closed: %s", type(e).__name__)
            return False
