"""
Unit tests for the shared/ utility modules.

Covers:
- shared.validators      (validate_api_key_format, is_public_address,
                          validate_webhook_url)
- shared.generators      (generate_api_key, api_key_display_prefix,
                          generate_webhook_secret)
- shared.datetime_utils  (parse_datetime, window_bounds, seconds_until)
- shared.ip_utils        (get_client_ip)
- shared.crypto          (hash_api_key, canonical_json, sign/verify)
- shared.tasks           (BackgroundTasks)
- shared.logging         (redact_sensitive_fields)
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import re
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from errors import WebhookUrlInvalidError
from shared.crypto import canonical_json, hash_api_key, sign_payload, verify_signature
from shared.datetime_utils import parse_datetime, seconds_until, window_bounds
from shared.generators import (
    api_key_display_prefix,
    generate_api_key,
    generate_webhook_secret,
)
from shared.ip_utils import get_client_ip
from shared.logging import redact_sensitive_fields
from shared.tasks import BackgroundTasks
from shared.validators import (
    is_public_address,
    validate_api_key_format,
    validate_webhook_url,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_request(headers: dict, client_host: str = "10.0.0.1") -> MagicMock:
    """Minimal mock of a FastAPI Request."""
    req = MagicMock()
    req.headers = headers
    req.client = MagicMock()
    req.client.host = client_host
    return req


def _resolver(*addresses: str):
    async def resolve(hostname: str) -> list[str]:
        return list(addresses)

    return resolve


async def _unresolvable(hostname: str) -> list[str]:
    raise OSError("Name or service not known")


# ---------------------------------------------------------------------------
# shared.validators - validate_api_key_format
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "key, expected",
    [
        ("cb_" + "a" * 32, True),
        ("cb_" + "A1b2C3d4" * 4, True),
        ("cb_" + "a" * 31, False),
        ("cb_" + "a" * 33, False),
        ("sk_" + "a" * 32, False),
        ("cb_" + "a" * 31 + "-", False),
        ("", False),
    ],
    ids=["lower", "mixed", "short", "long", "wrong_prefix", "bad_char", "empty"],
)
def test_validate_api_key_format(key, expected):
    assert validate_api_key_format(key) is expected


# ---------------------------------------------------------------------------
# shared.validators - webhook URLs
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "address, expected",
    [
        ("93.184.216.34", True),
        ("127.0.0.1", False),
        ("10.1.2.3", False),
        ("192.168.0.10", False),
        ("169.254.169.254", False),
        ("::1", False),
        ("0.0.0.0", False),
    ],
)
def test_is_public_address(address, expected):
    assert is_public_address(address) is expected


class TestValidateWebhookUrl:
    async def test_public_https_accepted(self):
        url = "https://hooks.example.com/bems"
        assert await validate_webhook_url(url, resolver=_resolver("93.184.216.34")) == url

    @pytest.mark.parametrize(
        "url",
        ["not a url", "ftp://example.com/hook", "https:///path-only"],
    )
    async def test_malformed_rejected(self, url):
        with pytest.raises(WebhookUrlInvalidError):
            await validate_webhook_url(url, resolver=_resolver("93.184.216.34"))

    async def test_http_rejected_outside_development(self):
        with pytest.raises(WebhookUrlInvalidError, match="HTTPS"):
            await validate_webhook_url(
                "http://hooks.example.com", resolver=_resolver("93.184.216.34")
            )

    @pytest.mark.parametrize(
        "url",
        [
            "https://localhost/hook",
            "https://127.0.0.1/hook",
            "https://10.0.0.5/hook",
            "https://[::1]/hook",
        ],
    )
    async def test_private_literal_hosts_rejected(self, url):
        with pytest.raises(WebhookUrlInvalidError):
            await validate_webhook_url(url)

    async def test_hostname_resolving_to_private_rejected(self):
        with pytest.raises(WebhookUrlInvalidError):
            await validate_webhook_url(
                "https://internal.example.com/hook",
                resolver=_resolver("93.184.216.34", "10.0.0.7"),
            )

    async def test_unresolvable_rejected(self):
        with pytest.raises(WebhookUrlInvalidError, match="resolved"):
            await validate_webhook_url("https://nowhere.example.com", resolver=_unresolvable)

    async def test_development_allows_http_localhost(self):
        url = "http://localhost:8080/hook"
        assert await validate_webhook_url(url, development=True) == url


# ---------------------------------------------------------------------------
# shared.generators
# ---------------------------------------------------------------------------


class TestGenerateApiKey:
    def test_format(self):
        assert re.match(r"^cb_[A-Za-z0-9]{32}$", generate_api_key())

    def test_unique(self):
        assert len({generate_api_key() for _ in range(50)}) == 50

    def test_display_prefix_is_first_11_chars(self):
        key = generate_api_key()
        assert api_key_display_prefix(key) == key[:11]
        assert api_key_display_prefix(key).startswith("cb_")


def test_generate_webhook_secret_is_32_hex():
    assert re.match(r"^[0-9a-f]{32}$", generate_webhook_secret())


# ---------------------------------------------------------------------------
# shared.datetime_utils
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "value, expected",
    [
        (None, None),
        (0, datetime(1970, 1, 1, tzinfo=timezone.utc)),
        ("2026-01-01T00:00:00Z", datetime(2026, 1, 1, tzinfo=timezone.utc)),
        ("2026-01-01T07:00:00+07:00", datetime(2026, 1, 1, tzinfo=timezone.utc)),
        (datetime(2026, 1, 1), datetime(2026, 1, 1, tzinfo=timezone.utc)),
        ("garbage", None),
    ],
)
def test_parse_datetime(value, expected):
    assert parse_datetime(value) == expected


class TestWindowBounds:
    def test_hour_aligned(self):
        now = datetime(2026, 3, 2, 10, 42, 17, tzinfo=timezone.utc)
        start, end = window_bounds(now, 3600)
        assert start == datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)
        assert end == start + timedelta(hours=1)

    def test_boundary_starts_new_window(self):
        now = datetime(2026, 3, 2, 11, 0, 0, tzinfo=timezone.utc)
        assert window_bounds(now, 3600)[0] == now

    def test_minute_bucket(self):
        now = datetime(2026, 3, 2, 10, 42, 17, tzinfo=timezone.utc)
        start, end = window_bounds(now, 60)
        assert start == datetime(2026, 3, 2, 10, 42, tzinfo=timezone.utc)
        assert end - start == timedelta(seconds=60)


class TestSecondsUntil:
    def test_rounds_up(self):
        now = datetime(2026, 1, 1, tzinfo=timezone.utc)
        assert seconds_until(now + timedelta(seconds=10.2), now) == 11

    def test_never_below_one(self):
        now = datetime(2026, 1, 1, tzinfo=timezone.utc)
        assert seconds_until(now, now) == 1
        assert seconds_until(now - timedelta(seconds=5), now) == 1


# ---------------------------------------------------------------------------
# shared.ip_utils - get_client_ip
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "headers, client_host, expected_ip",
    [
        ({"X-Forwarded-For": "5.6.7.8, 10.0.0.2"}, "10.0.0.1", "5.6.7.8"),
        ({"X-Forwarded-For": "5.6.7.8", "X-Real-IP": "9.9.9.9"}, "10.0.0.1", "5.6.7.8"),
        ({"X-Real-IP": "9.9.9.9"}, "10.0.0.1", "9.9.9.9"),
        ({"X-Forwarded-For": "2001:db8::1"}, "10.0.0.1", "2001:db8::1"),
        # CDN headers are not set by our proxy and could be spoofed by callers
        ({"CF-Connecting-IP": "1.2.3.4"}, "10.0.0.1", "10.0.0.1"),
        ({"X-Forwarded-For": "unknown", "X-Real-IP": "9.9.9.9"}, "10.0.0.1", "9.9.9.9"),
        ({}, "10.0.0.1", "10.0.0.1"),
        ({}, "testclient", None),
    ],
)
def test_get_client_ip(headers, client_host, expected_ip):
    assert get_client_ip(_make_request(headers, client_host)) == expected_ip


def test_get_client_ip_custom_header_chain():
    req = _make_request({"X-Client-IP": "7.7.7.7", "X-Forwarded-For": "5.6.7.8"})
    assert get_client_ip(req, trusted_headers=("X-Client-IP",)) == "7.7.7.7"


def test_get_client_ip_without_peer():
    req = _make_request({})
    req.client = None
    assert get_client_ip(req) is None


# ---------------------------------------------------------------------------
# shared.crypto
# ---------------------------------------------------------------------------


class TestHashApiKey:
    def test_deterministic(self):
        assert hash_api_key("cb_x", "pepper") == hash_api_key("cb_x", "pepper")

    def test_depends_on_pepper(self):
        assert hash_api_key("cb_x", "pepper-a") != hash_api_key("cb_x", "pepper-b")

    def test_is_hmac_sha256_hex(self):
        expected = hmac.new(b"pepper", b"cb_x", hashlib.sha256).hexdigest()
        assert hash_api_key("cb_x", "pepper") == expected


class TestCanonicalJson:
    def test_sorted_compact(self):
        assert canonical_json({"b": 1, "a": {"d": 2, "c": 3}}) == b'{"a":{"c":3,"d":2},"b":1}'

    def test_key_order_does_not_change_bytes(self):
        assert canonical_json({"x": 1, "y": 2}) == canonical_json({"y": 2, "x": 1})


class TestSignatures:
    BODY = b'{"event":"data.updated"}'

    def test_format(self):
        assert re.match(r"^sha256=[0-9a-f]{64}$", sign_payload(self.BODY, "s3cret"))

    def test_receiver_recomputes_same_value(self):
        expected = "sha256=" + hmac.new(b"s3cret", self.BODY, hashlib.sha256).hexdigest()
        assert sign_payload(self.BODY, "s3cret") == expected
        assert verify_signature(self.BODY, "s3cret", expected)

    @pytest.mark.parametrize(
        "body, secret, header",
        [
            (b'{"event":"data.updatex"}', "s3cret", None),
            (BODY, "other", None),
            (BODY, "s3cret", ""),
            (BODY, "s3cret", "md5=abc"),
        ],
        ids=["tampered_body", "wrong_secret", "empty_header", "wrong_scheme"],
    )
    def test_rejects(self, body, secret, header):
        if header is None:
            header = sign_payload(self.BODY, "s3cret")
        assert verify_signature(body, secret, header) is False


# ---------------------------------------------------------------------------
# shared.tasks
# ---------------------------------------------------------------------------


class TestBackgroundTasks:
    async def test_runs_and_drains(self):
        tasks = BackgroundTasks()
        done = []

        async def work():
            done.append(1)

        tasks.spawn(work(), name="work")
        await tasks.drain()
        assert done == [1]
        assert tasks.pending == 0

    async def test_failure_is_logged_not_raised(self):
        tasks = BackgroundTasks()

        async def broken():
            raise RuntimeError("nope")

        tasks.spawn(broken(), name="broken")
        await tasks.drain()
        await asyncio.sleep(0)
        assert tasks.pending == 0


# ---------------------------------------------------------------------------
# shared.logging
# ---------------------------------------------------------------------------


class TestRedaction:
    def test_sensitive_keys_redacted(self):
        event = redact_sensitive_fields(
            None,
            "info",
            {
                "event": "x",
                "secret": "abc",
                "key_hash": "deadbeef",
                "authorization": "Bearer cb_x",
                "webhook_signature": "sha256=...",
            },
        )
        assert event["secret"] == "***REDACTED***"
        assert event["key_hash"] == "***REDACTED***"
        assert event["authorization"] == "***REDACTED***"
        assert event["webhook_signature"] == "***REDACTED***"
        assert event["event"] == "x"

    def test_identifiers_kept(self):
        event = redact_sensitive_fields(
            None, "info", {"event": "x", "key_prefix": "cb_AbCdEfGh", "key_id": "1"}
        )
        assert event["key_prefix"] == "cb_AbCdEfGh"
        assert event["key_id"] == "1"
