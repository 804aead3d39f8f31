"""Authentication: turn discovered bridges into usable ``Bridge`` handles.

Per bridge
----------
1. Open an HTTPS session bound to the bridge (hostname binding, TLS policy).
2. ``GET /api/0/config``.
3. Decode the body into a :class:`BridgeConfig`.

Any step may fail.  The failure is raised as :class:`AuthenticationError`
carrying the very ``UnauthBridge`` that was passed in, and the session opened
in step 1 is closed.

Batches
-------
:meth:`Authenticator.authenticate_all` authenticates every bridge
independently and partitions the outcome into successes and failures; one
unreachable bridge never stops the rest.  Both lists follow input order, also
when the batch runs concurrently.
"""

from __future__ import annotations

import asyncio
from typing import Iterable

import httpx
from loguru import logger

from huelink.bridge.errors import AuthenticationError, BridgeError
from huelink.bridge.models import (
    AuthFailure,
    AuthResults,
    Bridge,
    BridgeConfig,
    UnauthBridge,
)
from huelink.bridge.session import Session
from huelink.config.schema import Config, SessionConfig

CONFIG_PATH = "/api/0/config"


class Authenticator:
    """Authenticates bridges one at a time or in batches.

    Parameters
    ----------
    session_config:
        TLS / timeout settings for the per-bridge sessions.
    concurrent:
        Authenticate batch members concurrently instead of one after another.
    max_concurrency:
        Upper bound on in-flight authentications when ``concurrent`` is set.
    transport:
        Optional ``httpx`` transport override shared by new sessions.
    """

    def __init__(
        self,
        session_config: SessionConfig | None = None,
        concurrent: bool = False,
        max_concurrency: int = 8,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.session_config = session_config or SessionConfig()
        self.concurrent = concurrent
        self.max_concurrency = max(1, max_concurrency)
        self._transport = transport

    @classmethod
    def from_config(
        cls,
        config: Config,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> Authenticator:
        return cls(
            session_config=config.session,
            concurrent=config.auth.concurrent,
            max_concurrency=config.auth.max_concurrency,
            transport=transport,
        )

    # -- single bridge -------------------------------------------------------

    async def authenticate(self, device: UnauthBridge) -> Bridge:
        """Authenticate *device*.

        Returns a new :class:`Bridge` with ``id``, address and port carried
        over and no application key.  Raises :class:`AuthenticationError`
        holding *device* unchanged on failure.
        """
        try:
            session = Session.from_config(device, self.session_config, transport=self._transport)
        except BridgeError as exc:
            raise AuthenticationError(device, exc) from exc

        try:
            data = await session.get(CONFIG_PATH)
            config = BridgeConfig.from_dict(data)
        except BridgeError as exc:
            await session.aclose()
            logger.warning(
                "[Bridge/Auth] {} failed ({}): {}", device.address, exc.kind.value, exc.message,
            )
            raise AuthenticationError(device, exc) from exc

        logger.info(
            "[Bridge/Auth] authenticated {!r} ({}) @ {}:{}",
            config.name, config.bridgeid, device.address, device.port,
        )
        return Bridge(
            address=device.address,
            port=device.port,
            session=session,
            config=config,
            id=device.id,
        )

    # -- batches -------------------------------------------------------------

    async def authenticate_all(self, devices: Iterable[UnauthBridge]) -> AuthResults:
        """Authenticate every bridge in *devices* and partition the outcomes."""
        pending = list(devices)
        if self.concurrent and len(pending) > 1:
            outcomes = await self._run_concurrently(pending)
        else:
            outcomes = [await self._attempt(device) for device in pending]

        results = AuthResults()
        for outcome in outcomes:
            if isinstance(outcome, AuthFailure):
                results.failures.append(outcome)
            else:
                results.successes.append(outcome)

        logger.info(
            "[Bridge/Auth] batch done: {} authenticated, {} failed",
            len(results.successes), len(results.failures),
        )
        return results

    async def _attempt(self, device: UnauthBridge) -> Bridge | AuthFailure:
        try:
            return await self.authenticate(device)
        except AuthenticationError as exc:
            return AuthFailure(device=exc.device, error=exc.error)

    async def _run_concurrently(self, devices: list[UnauthBridge]) -> list[Bridge | AuthFailure]:
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def bounded(device: UnauthBridge) -> Bridge | AuthFailure:
            async with semaphore:
                return await self._attempt(device)

        # gather preserves argument order regardless of completion order
        return list(await asyncio.gather(*(bounded(d) for d in devices)))


# ---------------------------------------------------------------------------
# Module-level shortcuts
# ---------------------------------------------------------------------------

async def authenticate(device: UnauthBridge, config: Config | None = None) -> Bridge:
    """Authenticate one bridge with settings from *config* (or defaults)."""
    return await Authenticator.from_config(config or Config()).authenticate(device)


async def authenticate_all(
    devices: Iterable[UnauthBridge],
    config: Config | None = None,
) -> AuthResults:
    """Authenticate a batch of bridges with settings from *config* (or defaults)."""
    return await Authenticator.from_config(config or Config()).authenticate_all(devices)
