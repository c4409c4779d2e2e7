"""Session manager: owns the single PDS session.

Refresh and login are serialized behind one lock: concurrent callers during
expiry wait for the in-flight refresh instead of starting their own.
"""

import asyncio
import sys
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional

from sp_bridge.errors import AuthError, PermanentError, SessionFailedError
from sp_bridge.ports.outbound import DestinationPort, Session


def _log(msg: str):
    print(msg, file=sys.stderr)


class SessionState(Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"
    REFRESHING = "refreshing"
    FAILED = "failed"


class SessionManager:
    """Hands out a valid session; refreshes or re-logs-in when needed."""

    def __init__(
        self,
        client: DestinationPort,
        identifier: str,
        secret: str,
        refresh_skew: float = 60.0,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._client = client
        self._identifier = identifier
        self._secret = secret
        self._refresh_skew = timedelta(seconds=refresh_skew)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = asyncio.Lock()
        self._session: Optional[Session] = None
        self._invalidated = False
        self._state = SessionState.UNAUTHENTICATED
        self._failure: Optional[Exception] = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def session(self) -> Optional[Session]:
        return self._session

    def _is_usable(self, session: Optional[Session]) -> bool:
        if session is None or self._invalidated:
            return False
        return self._clock() < session.expires_at - self._refresh_skew

    async def start(self) -> Session:
        """Log in eagerly at startup."""
        return await self.get_valid_session()

    async def get_valid_session(self) -> Session:
        """Return a non-expired session, refreshing or logging in first if needed.

        Raises SessionFailedError once credentials are permanently rejected, and
        TransientError when the PDS could not be reached (caller may retry).
        """
        self._raise_if_failed()
        session = self._session
        if self._is_usable(session):
            return session

        async with self._lock:
            # another caller may have refreshed while we waited
            self._raise_if_failed()
            if self._is_usable(self._session):
                return self._session

            previous = self._state
            self._state = SessionState.REFRESHING
            try:
                new_session = await self._renew()
            except (AuthError, PermanentError) as e:
                self._state = SessionState.FAILED
                self._failure = e
                _log(f"[session] credentials rejected for {self._identifier}: {e}")
                raise SessionFailedError(f"PDS rejected credentials for {self._identifier}: {e}") from e
            except BaseException:
                self._state = previous
                raise

            self._session = new_session
            self._invalidated = False
            self._state = SessionState.AUTHENTICATED
            return new_session

    async def _renew(self) -> Session:
        if self._session is not None:
            try:
                session = await self._client.refresh(self._session)
                _log(f"[session] refreshed session for {session.handle or session.did}")
                return session
            except (AuthError, PermanentError) as e:
                _log(f"[session] refresh rejected ({e}), logging in again")

        _log(f"[session] logging in as {self._identifier}")
        session = await self._client.login(self._identifier, self._secret)
        _log(f"[session] logged in as {session.handle or session.did}")
        return session

    def invalidate(self, session: Optional[Session] = None):
        """Force a refresh on the next get_valid_session().

        Passing the session that failed makes the call a no-op once that
        session has already been replaced.
        """
        if session is not None and session is not self._session:
            return
        if self._state == SessionState.AUTHENTICATED:
            self._invalidated = True

    def _raise_if_failed(self):
        if self._state == SessionState.FAILED:
            raise SessionFailedError(f"session unavailable: {self._failure}")
