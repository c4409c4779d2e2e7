"""AT Protocol PDS client using aiohttp (XRPC over HTTP)."""

import asyncio
import time
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Mapping, Optional

import aiohttp
import jwt

from sp_bridge.config import DEFAULT_SERVICE_URL
from sp_bridge.errors import AuthError, PermanentError, TransientError
from sp_bridge.ports.outbound import RecordRef, Session

CREATE_SESSION = "com.atproto.server.createSession"
REFRESH_SESSION = "com.atproto.server.refreshSession"
CREATE_RECORD = "com.atproto.repo.createRecord"

_AUTH_ERRORS = {"ExpiredToken", "InvalidToken", "AuthenticationRequired", "AuthMissing"}
_TRANSIENT_STATUS = {408, 425, 429}


def token_expiry(token: str, fallback_ttl: float, now: Optional[datetime] = None) -> datetime:
    """Read ``exp`` from an access JWT without verifying it."""
    now = now or datetime.now(timezone.utc)
    try:
        claims = jwt.decode(token, options={"verify_signature": False})
        exp = claims.get("exp")
        if exp is not None:
            return datetime.fromtimestamp(float(exp), tz=timezone.utc)
    except (jwt.PyJWTError, TypeError, ValueError):
        pass
    return now + timedelta(seconds=fallback_ttl)


def _retry_after(status: int, headers: Mapping[str, str]) -> Optional[float]:
    raw = headers.get("Retry-After")
    if raw:
        try:
            return max(float(raw), 0.0)
        except ValueError:
            pass
        try:
            when = parsedate_to_datetime(raw)
        except (TypeError, ValueError):
            when = None
        if when is not None:
            if when.tzinfo is None:
                when = when.replace(tzinfo=timezone.utc)
            return max((when - datetime.now(timezone.utc)).total_seconds(), 0.0)
    # ratelimit-* headers come with every write; only a spent window is a hint
    if status != 429 and headers.get("RateLimit-Remaining", "").strip() != "0":
        return None
    reset = headers.get("RateLimit-Reset")
    if reset:
        try:
            return max(float(reset) - time.time(), 0.0)
        except ValueError:
            pass
    return None


def classify_error(
    nsid: str,
    status: int,
    data: Dict[str, Any],
    retry_after: Optional[float] = None,
) -> Exception:
    """Map an XRPC error response onto the bridge error taxonomy."""
    name = data.get("error") or ""
    detail = data.get("message") or name or f"HTTP {status}"
    label = f"{status} {name}" if name else str(status)
    message = f"{nsid} failed ({label}): {detail}"
    if status == 401 or name in _AUTH_ERRORS:
        return AuthError(message)
    if status in _TRANSIENT_STATUS or status >= 500:
        return TransientError(message, retry_after=retry_after)
    return PermanentError(message)


class AtprotoClient:
    """Async XRPC client for session management and record creation."""

    def __init__(
        self,
        service_url: str = DEFAULT_SERVICE_URL,
        session_ttl_seconds: float = 7200,
        timeout_seconds: float = 15.0,
    ):
        self.service_url = service_url.rstrip("/")
        self._session_ttl = session_ttl_seconds
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    async def _post(
        self,
        nsid: str,
        payload: Optional[Dict[str, Any]] = None,
        token: Optional[str] = None,
    ) -> Dict[str, Any]:
        url = f"{self.service_url}/xrpc/{nsid}"
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        try:
            async with aiohttp.ClientSession(timeout=self._timeout) as http:
                async with http.post(url, json=payload, headers=headers) as resp:
                    try:
                        data = await resp.json(content_type=None)
                    except ValueError:
                        data = None
                    status = resp.status
                    retry_after = _retry_after(resp.status, resp.headers)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransientError(f"{nsid}: {type(e).__name__}: {e}")

        if not isinstance(data, dict):
            data = {}
        if status >= 400:
            raise classify_error(nsid, status, data, retry_after)
        return data

    def _to_session(self, data: Dict[str, Any]) -> Session:
        try:
            access = data["accessJwt"]
            return Session(
                did=data["did"],
                handle=data.get("handle", ""),
                access_token=access,
                refresh_token=data["refreshJwt"],
                expires_at=token_expiry(access, self._session_ttl),
            )
        except KeyError as e:
            raise TransientError(f"session response missing {e}")

    async def login(self, identifier: str, secret: str) -> Session:
        data = await self._post(CREATE_SESSION, {"identifier": identifier, "password": secret})
        return self._to_session(data)

    async def refresh(self, session: Session) -> Session:
        data = await self._post(REFRESH_SESSION, token=session.refresh_token)
        return self._to_session(data)

    async def create_record(
        self,
        session: Session,
        collection: str,
        record: Dict[str, Any],
    ) -> RecordRef:
        payload = {
            "repo": session.did,
            "collection": collection,
            "record": record,
            # PDSes can't resolve the Streamplace lexicon yet
            "validate": False,
        }
        data = await self._post(CREATE_RECORD, payload, token=session.access_token)
        if "uri" not in data:
            raise PermanentError(f"{CREATE_RECORD}: response without uri: {data}")
        return RecordRef(uri=data["uri"], cid=data.get("cid"))
