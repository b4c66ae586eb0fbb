"""Bounded wait for a session to appear after an out-of-band sign-in."""

from __future__ import annotations

import asyncio
from logging import getLogger
from typing import TYPE_CHECKING

from creditkeeper.config.access import SignInWaitConfig
from creditkeeper.domain.errors import InvalidSession, ProfileError, SignInTimeout

if TYPE_CHECKING:
    from creditkeeper.domain.model import RemoteSession
    from creditkeeper.domain.ports import RemoteProfileClient

log = getLogger(__name__)


async def await_session(
    profiles: RemoteProfileClient,
    config: SignInWaitConfig | None = None,
) -> RemoteSession:
    """Poll ``profiles.get_session()`` until a session exists or the deadline passes.

    Transient failures are retried; an invalidating failure ends the wait with
    ``InvalidSession``. Cancelling the awaiting task stops polling immediately.
    """

    settings = config or SignInWaitConfig()
    interval = settings.interval_seconds
    attempts = 0
    try:
        async with asyncio.timeout(settings.deadline_seconds):
            while True:
                attempts += 1
                try:
                    session = await profiles.get_session()
                except ProfileError as exc:
                    if exc.invalidates_session:
                        raise InvalidSession(f"Sign-in was rejected: {exc}") from exc
                    log.debug("Session poll %s failed transiently (%s)", attempts, exc.kind)
                else:
                    if session is not None:
                        log.info("Session available after %s poll(s)", attempts)
                        return session
                await asyncio.sleep(interval)
                interval = min(interval * settings.backoff_factor, settings.max_interval_seconds)
    except TimeoutError as exc:
        raise SignInTimeout(
            f"No session after {attempts} poll(s) within {settings.deadline_seconds}s"
        ) from exc
