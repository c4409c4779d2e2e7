"""Launcher: wires config, PDS session, dispatcher and Discord gateway."""

import asyncio
import signal
import sys
from dataclasses import dataclass
from typing import Optional

from sp_bridge.adapters.atproto import AtprotoClient
from sp_bridge.adapters.discord import DiscordGateway
from sp_bridge.config import BridgeConfig, __version__
from sp_bridge.domain.backoff import RetryPolicy, RetrySchedule
from sp_bridge.domain.dispatcher import Dispatcher
from sp_bridge.domain.mapping import MappingTable
from sp_bridge.domain.pipeline import PublishPipeline
from sp_bridge.domain.session import SessionManager
from sp_bridge.errors import ConfigError, GatewayError, SessionFailedError, TransientError
from sp_bridge.ports.outbound import DestinationPort, Session


def _log(msg: str):
    print(msg, file=sys.stderr)


@dataclass
class Bridge:
    mapping: MappingTable
    sessions: SessionManager
    pipeline: PublishPipeline
    dispatcher: Dispatcher


def build_bridge(config: BridgeConfig, client: Optional[DestinationPort] = None) -> Bridge:
    """Assemble the forwarding engine. Raises ConfigError on a bad mapping."""
    mapping = MappingTable.parse(config.channel_mappings)
    if client is None:
        client = AtprotoClient(
            service_url=config.atproto.service_url,
            session_ttl_seconds=config.atproto.session_ttl_seconds,
        )
    sessions = SessionManager(client, config.atproto.handle, config.atproto.app_password)
    try:
        policy = RetryPolicy(
            max_attempts=config.retry.max_attempts,
            base_delay=config.retry.base_delay,
            factor=config.retry.factor,
            max_delay=config.retry.max_delay,
            jitter=config.retry.jitter,
        )
    except ValueError as e:
        raise ConfigError(f"invalid retry settings: {e}")
    pipeline = PublishPipeline(client, sessions, policy)
    dispatcher = Dispatcher(
        mapping,
        pipeline,
        max_workers=config.dispatch.max_workers,
        shutdown_timeout=config.dispatch.shutdown_timeout,
        max_text_length=config.dispatch.max_text_length,
    )
    return Bridge(mapping=mapping, sessions=sessions, pipeline=pipeline, dispatcher=dispatcher)


async def start_session(
    sessions: SessionManager,
    policy: RetryPolicy,
    sleep=asyncio.sleep,
) -> Session:
    """Log in eagerly, backing off while the PDS is unreachable.

    Rejected credentials raise SessionFailedError at once; TransientError is
    re-raised once the policy runs out of attempts.
    """
    schedule = RetrySchedule(policy)
    while True:
        attempt = schedule.begin()
        try:
            return await sessions.start()
        except TransientError as e:
            delay = schedule.retry_later(e, e.retry_after)
            if delay is None:
                raise
            _log(
                f"[session] PDS unreachable at startup "
                f"(attempt {attempt}/{policy.max_attempts}): {e}, retrying in {delay:.2f}s"
            )
            await sleep(delay)


async def run_bridge(config: BridgeConfig):
    """Run until SIGINT/SIGTERM or a fatal error."""
    bridge = build_bridge(config)
    _log(f"sp-bridge {__version__}: {len(bridge.mapping)} channel mapping(s)")
    for channel_id in bridge.mapping.source_channel_ids:
        _log(f"  {channel_id} -> {bridge.mapping.resolve(channel_id)}")

    await start_session(bridge.sessions, bridge.pipeline.policy)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, bridge.dispatcher.stop)
        except NotImplementedError:  # Windows
            pass

    gateway = DiscordGateway(command_prefix=config.discord.command_prefix)
    gateway_task = asyncio.create_task(gateway.run_forever(config.discord.token))
    try:
        await bridge.dispatcher.run(gateway.subscribe())
    finally:
        await gateway.close()
        await asyncio.gather(gateway_task, return_exceptions=True)
        _log(
            f"sp-bridge stopped: forwarded={bridge.dispatcher.forwarded} "
            f"dropped={bridge.dispatcher.dropped}"
        )


def main() -> int:
    """Entry point. Returns the process exit status."""
    try:
        config = BridgeConfig.from_env()
        asyncio.run(run_bridge(config))
    except KeyboardInterrupt:
        _log("interrupted")
    except ConfigError as e:
        _log(f"fatal: configuration error: {e}")
        return 1
    except (SessionFailedError, GatewayError, TransientError) as e:
        _log(f"fatal: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
