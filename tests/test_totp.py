"""
Tests for TOTP computation and windowed verification.
"""
from datetime import datetime, timedelta, timezone

import pyotp
import pytest

from conftest import DEMO_SECRET, FixedClock
from twofactor.services.totp import TotpEngine, compute_code, counter_at

# ASCII "12345678901234567890", the RFC 4226 / RFC 6238 SHA-1 test key
RFC_SECRET = "GEZDGNBVGY3TQOJQGEZDGNBVGY3TQOJQ"

# RFC 4226 appendix D, HOTP values for counters 0..9
RFC_HOTP = ["755224", "287082", "359152", "969429", "338314", "254676", "287922", "162583", "399871", "520489"]


def engine_at(timestamp: float, window: int = 2) -> TotpEngine:
    return TotpEngine(FixedClock(datetime.fromtimestamp(timestamp, tz=timezone.utc)), window)


class TestComputeCode:
    @pytest.mark.parametrize("counter,expected", list(enumerate(RFC_HOTP)))
    def test_rfc4226_vectors(self, counter, expected):
        assert compute_code(RFC_SECRET, counter) == expected

    @pytest.mark.parametrize(
        "timestamp,expected",
        [
            (59, "287082"),
            (1111111109, "081804"),
            (1111111111, "050471"),
            (1234567890, "005924"),
            (2000000000, "279037"),
        ],
    )
    def test_rfc6238_vectors(self, timestamp, expected):
        assert compute_code(RFC_SECRET, counter_at(timestamp)) == expected

    def test_codes_are_zero_padded(self):
        assert compute_code(RFC_SECRET, counter_at(1234567890)).startswith("00")

    def test_demo_secret_at_unix_time_59(self):
        # unix time 59 with a 30s step is counter 1; value cross-checked with
        # openssl HMAC-SHA1 over key 48656c6c6f21deadbeef
        assert counter_at(59) == 1
        assert compute_code(DEMO_SECRET, counter_at(59)) == "996554"
        assert compute_code(DEMO_SECRET, 0) == "282760"

    def test_secret_format_is_normalized(self):
        assert compute_code("jbsw y3dp ehpk 3pxp", 7) == compute_code(DEMO_SECRET, 7)


class TestVerifyWindow:
    # counter 5: the window of 2 covers counters 3..7
    NOW = 5 * 30 + 1

    @pytest.mark.parametrize("counter", [3, 4, 5, 6, 7])
    def test_codes_inside_window_accepted(self, counter):
        assert engine_at(self.NOW).verify(RFC_SECRET, RFC_HOTP[counter]) is True

    @pytest.mark.parametrize("counter", [2, 8])
    def test_codes_outside_window_rejected(self, counter):
        assert engine_at(self.NOW).verify(RFC_SECRET, RFC_HOTP[counter]) is False

    def test_window_edges_relative_to_current_counter(self, clock):
        engine = TotpEngine(clock, 2)
        current = counter_at(clock.timestamp())
        assert engine.verify(DEMO_SECRET, compute_code(DEMO_SECRET, current - 2))
        assert engine.verify(DEMO_SECRET, compute_code(DEMO_SECRET, current + 2))
        assert not engine.verify(DEMO_SECRET, compute_code(DEMO_SECRET, current - 3))

    def test_explicit_window_overrides_default(self):
        engine = engine_at(self.NOW)
        assert engine.verify(RFC_SECRET, RFC_HOTP[4], window=1)
        assert not engine.verify(RFC_SECRET, RFC_HOTP[3], window=1)
        assert not engine.verify(RFC_SECRET, RFC_HOTP[4], window=0)

    def test_code_drifts_out_as_clock_advances(self, clock):
        engine = TotpEngine(clock, 2)
        code = engine.now_code(DEMO_SECRET)
        clock.advance(60)
        assert engine.verify(DEMO_SECRET, code)
        clock.advance(30)
        assert not engine.verify(DEMO_SECRET, code)

    def test_window_never_goes_below_counter_zero(self):
        assert engine_at(10).verify(RFC_SECRET, RFC_HOTP[0])

    def test_agrees_with_pyotp_totp(self, clock):
        engine = TotpEngine(clock, 2)
        assert engine.verify(DEMO_SECRET, pyotp.TOTP(DEMO_SECRET).at(clock.now()))
        assert engine.verify(DEMO_SECRET, pyotp.TOTP(DEMO_SECRET).at(clock.now(), 2))
        assert not engine.verify(DEMO_SECRET, pyotp.TOTP(DEMO_SECRET).at(clock.now(), 3))

    def test_explicit_now_overrides_clock(self, clock):
        engine = TotpEngine(clock, 0)
        later = clock.now() + timedelta(minutes=5)
        code = compute_code(DEMO_SECRET, counter_at(later.timestamp()))
        assert engine.verify(DEMO_SECRET, code, now=later)
        assert not engine.verify(DEMO_SECRET, code)


class TestVerifyFailsClosed:
    @pytest.mark.parametrize("code", ["", "12345", "1234567", "abcdef", "12 345", " 287082", "２８７０８２", None, 287082])
    def test_malformed_codes_rejected(self, code):
        assert engine_at(59).verify(RFC_SECRET, code) is False

    @pytest.mark.parametrize("secret", ["", None, "not base32!", "1111"])
    def test_malformed_secret_rejected(self, secret):
        assert engine_at(59).verify(secret, "287082") is False
