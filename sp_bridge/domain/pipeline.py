"""Publish pipeline: one createRecord call per OutboundRecord, with retries."""

import asyncio
import random
import sys
from typing import Awaitable, Callable, Optional

from sp_bridge.domain.backoff import RetryPolicy, RetrySchedule
from sp_bridge.domain.session import SessionManager
from sp_bridge.errors import AuthError, PermanentError, SessionFailedError, TransientError
from sp_bridge.ports.inbound import InboundMessage
from sp_bridge.ports.outbound import DestinationPort, OutboundRecord, PublishResult, Session


def _log(msg: str):
    print(msg, file=sys.stderr)


def _describe(record: OutboundRecord, message: Optional[InboundMessage]) -> str:
    if message is None:
        return f"streamer={record.destination_account_id}"
    return (
        f"ch={message.source_channel_id} msg={message.source_message_id} "
        f"streamer={record.destination_account_id}"
    )


class PublishPipeline:
    """Publishes records through the session manager.

    - Transient failures: exponential backoff, bounded attempts
    - Auth failures: invalidate the session, retry once immediately
    - Permanent failures: drop and log
    """

    def __init__(
        self,
        client: DestinationPort,
        sessions: SessionManager,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rand: Callable[[], float] = random.random,
    ):
        self._client = client
        self._sessions = sessions
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._rand = rand

    async def publish(
        self,
        record: OutboundRecord,
        message: Optional[InboundMessage] = None,
    ) -> PublishResult:
        """Publish one record. Never raises except SessionFailedError and cancellation."""
        schedule = RetrySchedule(self.policy, rand=self._rand)
        where = _describe(record, message)
        payload = record.to_record()
        auth_retried = False

        while True:
            attempt = schedule.begin()
            session: Optional[Session] = None
            try:
                session = await self._sessions.get_valid_session()
                ref = await self._client.create_record(session, record.collection_type, payload)
            except SessionFailedError:
                raise
            except AuthError as e:
                self._sessions.invalidate(session)
                if not auth_retried:
                    auth_retried = True
                    _log(f"[pipeline] auth rejected ({e}), refreshing session: {where}")
                    if schedule.retry_now(e):
                        continue
                    break
                delay = schedule.retry_later(e)
            except TransientError as e:
                delay = schedule.retry_later(e, e.retry_after)
            except PermanentError as e:
                schedule.fail(e)
                break
            else:
                schedule.succeed()
                _log(f"[pipeline] posted {ref.uri} ({where}, attempt {attempt})")
                return PublishResult(success=True, record_ref=ref, attempts=attempt)

            if delay is None:
                break
            _log(
                f"[pipeline] attempt {attempt}/{self.policy.max_attempts} failed "
                f"({schedule.attempt.last_error}), retrying in {delay:.2f}s: {where}"
            )
            await self._sleep(delay)

        error = schedule.attempt.last_error
        _log(
            f"[pipeline] dropped after {schedule.attempt.attempt_count} attempt(s): "
            f"{where} error={type(error).__name__}: {error}"
        )
        return PublishResult(
            success=False,
            attempts=schedule.attempt.attempt_count,
            error=str(error),
        )
