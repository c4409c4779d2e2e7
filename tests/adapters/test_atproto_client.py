"""Unit tests for AtprotoClient."""

import time
from datetime import datetime, timedelta, timezone
from email.utils import format_datetime
from unittest.mock import patch

import aiohttp
import jwt
import pytest

from sp_bridge.adapters.atproto.client import (
    CREATE_RECORD,
    CREATE_SESSION,
    REFRESH_SESSION,
    AtprotoClient,
    _retry_after,
    classify_error,
    token_expiry,
)
from sp_bridge.errors import AuthError, PermanentError, TransientError
from sp_bridge.ports.outbound import DestinationPort, Session

EXP = datetime(2030, 1, 1, tzinfo=timezone.utc)
ACCESS = jwt.encode({"sub": "did:plc:bot", "exp": int(EXP.timestamp())}, "k", algorithm="HS256")

SESSION_JSON = {
    "did": "did:plc:bot",
    "handle": "bot.example",
    "accessJwt": ACCESS,
    "refreshJwt": "refresh-token",
}


def _session():
    return Session(
        did="did:plc:bot",
        handle="bot.example",
        access_token="access-token",
        refresh_token="refresh-token",
        expires_at=EXP,
    )


def _mock_aiohttp_session(responses, requests=None):
    """Return a class that replaces aiohttp.ClientSession.

    responses: list of (status, json_body[, headers]) tuples, or exceptions,
    consumed in order by successive post() calls.
    """
    call_idx = 0
    if requests is None:
        requests = []

    class FakeResponse:
        def __init__(self, status, data, headers):
            self.status = status
            self._data = data
            self.headers = headers

        async def json(self, **kwargs):
            if isinstance(self._data, Exception):
                raise self._data
            return self._data

        async def __aenter__(self):
            return self

        async def __aexit__(self, *args):
            pass

    class FakeSession:
        def __init__(self, **kwargs):
            pass

        def post(self, url, **kwargs):
            nonlocal call_idx
            requests.append((url, kwargs))
            item = responses[call_idx]
            call_idx += 1
            if isinstance(item, Exception):
                raise item
            status, data, *rest = item
            return FakeResponse(status, data, rest[0] if rest else {})

        async def __aenter__(self):
            return self

        async def __aexit__(self, *args):
            pass

    return FakeSession


@pytest.fixture
def client():
    return AtprotoClient(service_url="https://pds.example/")


class TestTokenExpiry:
    def test_reads_exp_claim(self):
        assert token_expiry(ACCESS, fallback_ttl=60) == EXP

    def test_fallback_for_opaque_token(self):
        now = datetime(2025, 1, 1, tzinfo=timezone.utc)
        assert token_expiry("not-a-jwt", fallback_ttl=60, now=now) == now + timedelta(seconds=60)

    def test_fallback_without_exp(self):
        now = datetime(2025, 1, 1, tzinfo=timezone.utc)
        token = jwt.encode({"sub": "x"}, "k", algorithm="HS256")
        assert token_expiry(token, fallback_ttl=10, now=now) == now + timedelta(seconds=10)


class TestClassifyError:
    def test_401(self):
        assert isinstance(classify_error(CREATE_RECORD, 401, {}), AuthError)

    def test_expired_token_400(self):
        err = classify_error(CREATE_RECORD, 400, {"error": "ExpiredToken", "message": "Token has expired"})
        assert isinstance(err, AuthError)
        assert "Token has expired" in str(err)

    @pytest.mark.parametrize("status", [408, 429, 500, 502, 503, 504])
    def test_transient(self, status):
        assert isinstance(classify_error(CREATE_RECORD, status, {}), TransientError)

    def test_retry_after_carried(self):
        err = classify_error(CREATE_RECORD, 429, {"error": "RateLimitExceeded"}, retry_after=3.0)
        assert err.retry_after == 3.0

    @pytest.mark.parametrize("status", [400, 403, 404, 413])
    def test_permanent(self, status):
        assert isinstance(classify_error(CREATE_RECORD, status, {"error": "InvalidRequest"}), PermanentError)

    def test_message_format(self):
        err = classify_error(CREATE_RECORD, 503, {})
        assert str(err) == f"{CREATE_RECORD} failed (503): HTTP 503"


class TestLogin:
    def test_implements_port(self, client):
        assert isinstance(client, DestinationPort)

    @pytest.mark.asyncio
    async def test_login_success(self, client):
        requests = []
        fake = _mock_aiohttp_session([(200, SESSION_JSON)], requests)
        with patch("sp_bridge.adapters.atproto.client.aiohttp.ClientSession", fake):
            session = await client.login("bot.example", "app-pw")

        assert session.did == "did:plc:bot"
        assert session.handle == "bot.example"
        assert session.refresh_token == "refresh-token"
        assert session.expires_at == EXP

        url, kwargs = requests[0]
        assert url == f"https://pds.example/xrpc/{CREATE_SESSION}"
        assert kwargs["json"] == {"identifier": "bot.example", "password": "app-pw"}
        assert kwargs["headers"] == {}

    @pytest.mark.asyncio
    async def test_login_rejected(self, client):
        fake = _mock_aiohttp_session([(401, {"error": "AuthenticationRequired", "message": "Invalid identifier or password"})])
        with patch("sp_bridge.adapters.atproto.client.aiohttp.ClientSession", fake):
            with pytest.raises(AuthError, match="Invalid identifier or password"):
                await client.login("bot.example", "wrong")

    @pytest.mark.asyncio
    async def test_network_error_is_transient(self, client):
        fake = _mock_aiohttp_session([aiohttp.ClientConnectionError("refused")])
        with patch("sp_bridge.adapters.atproto.client.aiohttp.ClientSession", fake):
            with pytest.raises(TransientError, match="refused"):
                await client.login("bot.example", "pw")

    @pytest.mark.asyncio
    async def test_bad_session_body(self, client):
        fake = _mock_aiohttp_session([(200, {"did": "did:plc:bot"})])
        with patch("sp_bridge.adapters.atproto.client.aiohttp.ClientSession", fake):
            with pytest.raises(TransientError, match="missing"):
                await client.login("bot.example", "pw")


class TestRefresh:
    @pytest.mark.asyncio
    async def test_refresh_uses_refresh_token(self, client):
        requests = []
        fake = _mock_aiohttp_session([(200, SESSION_JSON)], requests)
        with patch("sp_bridge.adapters.atproto.client.aiohttp.ClientSession", fake):
            session = await client.refresh(_session())

        assert session.access_token == ACCESS
        url, kwargs = requests[0]
        assert url.endswith(REFRESH_SESSION)
        assert kwargs["headers"] == {"Authorization": "Bearer refresh-token"}

    @pytest.mark.asyncio
    async def test_expired_refresh_token(self, client):
        fake = _mock_aiohttp_session([(400, {"error": "ExpiredToken"})])
        with patch("sp_bridge.adapters.atproto.client.aiohttp.ClientSession", fake):
            with pytest.raises(AuthError):
                await client.refresh(_session())


class TestCreateRecord:
    @pytest.mark.asyncio
    async def test_create_record(self, client):
        requests = []
        fake = _mock_aiohttp_session(
            [(200, {"uri": "at://did:plc:bot/place.stream.chat.message/3k", "cid": "bafy"})],
            requests,
        )
        record = {"$type": "place.stream.chat.message", "text": "Alice (Discord): hi"}
        with patch("sp_bridge.adapters.atproto.client.aiohttp.ClientSession", fake):
            ref = await client.create_record(_session(), "place.stream.chat.message", record)

        assert ref.uri == "at://did:plc:bot/place.stream.chat.message/3k"
        assert ref.cid == "bafy"
        url, kwargs = requests[0]
        assert url == f"https://pds.example/xrpc/{CREATE_RECORD}"
        assert kwargs["headers"] == {"Authorization": "Bearer access-token"}
        assert kwargs["json"] == {
            "repo": "did:plc:bot",
            "collection": "place.stream.chat.message",
            "record": record,
            "validate": False,
        }

    @pytest.mark.asyncio
    async def test_rate_limited(self, client):
        fake = _mock_aiohttp_session([(429, {"error": "RateLimitExceeded"}, {"Retry-After": "4"})])
        with patch("sp_bridge.adapters.atproto.client.aiohttp.ClientSession", fake):
            with pytest.raises(TransientError) as exc_info:
                await client.create_record(_session(), "place.stream.chat.message", {})
        assert exc_info.value.retry_after == 4.0

    @pytest.mark.asyncio
    async def test_server_error_non_json(self, client):
        fake = _mock_aiohttp_session([(502, ValueError("not json"))])
        with patch("sp_bridge.adapters.atproto.client.aiohttp.ClientSession", fake):
            with pytest.raises(TransientError, match="502"):
                await client.create_record(_session(), "place.stream.chat.message", {})

    @pytest.mark.asyncio
    async def test_validation_error(self, client):
        fake = _mock_aiohttp_session([(400, {"error": "InvalidRequest", "message": "Record/text must not be longer"})])
        with patch("sp_bridge.adapters.atproto.client.aiohttp.ClientSession", fake):
            with pytest.raises(PermanentError, match="InvalidRequest"):
                await client.create_record(_session(), "place.stream.chat.message", {})

    @pytest.mark.asyncio
    async def test_response_without_uri(self, client):
        fake = _mock_aiohttp_session([(200, {})])
        with patch("sp_bridge.adapters.atproto.client.aiohttp.ClientSession", fake):
            with pytest.raises(PermanentError, match="without uri"):
                await client.create_record(_session(), "place.stream.chat.message", {})

    @pytest.mark.asyncio
    async def test_server_error_ignores_open_rate_limit_window(self, client):
        headers = {
            "RateLimit-Limit": "5000",
            "RateLimit-Remaining": "4999",
            "RateLimit-Reset": str(int(time.time()) + 3600),
        }
        fake = _mock_aiohttp_session([(503, {}, headers)])
        with patch("sp_bridge.adapters.atproto.client.aiohttp.ClientSession", fake):
            with pytest.raises(TransientError) as exc_info:
                await client.create_record(_session(), "place.stream.chat.message", {})
        assert exc_info.value.retry_after is None


class TestRetryAfter:
    def test_seconds(self):
        assert _retry_after(503, {"Retry-After": "2"}) == 2.0

    def test_http_date(self):
        when = datetime.now(timezone.utc) + timedelta(seconds=120)
        delay = _retry_after(503, {"Retry-After": format_datetime(when, usegmt=True)})
        assert 100 <= delay <= 120

    def test_http_date_in_past(self):
        when = datetime(2000, 1, 1, tzinfo=timezone.utc)
        assert _retry_after(429, {"Retry-After": format_datetime(when, usegmt=True)}) == 0.0

    def test_garbage_ignored(self):
        assert _retry_after(503, {"Retry-After": "soon"}) is None

    def test_rate_limit_reset_on_429(self):
        reset = str(int(time.time()) + 60)
        delay = _retry_after(429, {"RateLimit-Reset": reset})
        assert 55 <= delay <= 60

    def test_rate_limit_reset_when_window_spent(self):
        reset = str(int(time.time()) + 60)
        delay = _retry_after(500, {"RateLimit-Remaining": "0", "RateLimit-Reset": reset})
        assert 55 <= delay <= 60

    def test_rate_limit_reset_ignored_with_budget_left(self):
        reset = str(int(time.time()) + 3600)
        assert _retry_after(503, {"RateLimit-Remaining": "12", "RateLimit-Reset": reset}) is None
        assert _retry_after(500, {"RateLimit-Reset": reset}) is None
