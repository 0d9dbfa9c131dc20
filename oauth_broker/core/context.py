"""Application context and lifecycle management for the MCP OAuth broker.

Everything the request handlers share (store, upstream client, verifier) is
built once into a :class:`BrokerContext` and passed explicitly; there is no
module-level mutable state.
"""

import asyncio
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass

import httpx

from oauth_broker.auth.broker import AuthorizationBroker
from oauth_broker.auth.clients import ClientClassifier
from oauth_broker.auth.state import StateCodec
from oauth_broker.auth.storage import (
    AuthorizationCodeStore,
    InMemoryAuthorizationCodeStore,
)
from oauth_broker.auth.upstream import UpstreamProvider
from oauth_broker.auth.verifier import IdentityVerifier, UserInfoVerifier
from oauth_broker.config import Settings, get_settings

from .logging import logger


@dataclass
class BrokerContext:
    """Context for the MCP OAuth broker."""

    settings: Settings
    store: AuthorizationCodeStore
    upstream: UpstreamProvider
    broker: AuthorizationBroker
    verifier: IdentityVerifier
    # Periodic purge of expired broker codes, set by start_broker_context()
    sweeper: asyncio.Task | None = None


def build_broker_context(
    settings: Settings | None = None,
    *,
    http_client: httpx.AsyncClient | None = None,
    store: AuthorizationCodeStore | None = None,
    verifier: IdentityVerifier | None = None,
    clock: Callable[[], float] = time.time,
) -> BrokerContext:
    """Wire the broker components from settings.

    Args:
        settings: Application settings (defaults to the environment)
        http_client: Shared client for upstream calls (tests inject a mock transport)
        store: Broker code store (defaults to in-memory)
        verifier: Bearer token verifier (defaults to upstream userinfo)
        clock: Time source shared by the store, state codec and broker

    Returns:
        BrokerContext: The wired, not yet started, context
    """
    settings = settings or get_settings()
    store = store or InMemoryAuthorizationCodeStore(clock=clock)
    upstream = UpstreamProvider.from_settings(settings, http_client=http_client)
    verifier = verifier or UserInfoVerifier.from_settings(
        settings, http_client=http_client
    )

    broker = AuthorizationBroker(
        issuer=settings.issuer,
        callback_uri=settings.callback_uri,
        classifier=ClientClassifier.from_settings(settings),
        store=store,
        upstream=upstream,
        state_codec=StateCodec(
            settings.state_secret_key,
            settings.state_ttl_seconds,
            clock=clock,
        ),
        code_ttl_seconds=settings.auth_code_ttl_seconds,
        scopes_supported=settings.get_scopes_supported_list(),
        require_pkce=settings.require_pkce,
        defer_upstream_exchange=settings.defer_upstream_exchange,
        test_flow_redirect_uri=settings.test_flow_redirect_uri,
        clock=clock,
    )
    logger.info("✓ Broker context built (issuer=%s)", settings.issuer)
    return BrokerContext(
        settings=settings,
        store=store,
        upstream=upstream,
        broker=broker,
        verifier=verifier,
    )


async def _sweep_expired_codes(store: AuthorizationCodeStore, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            await store.sweep()
        except Exception as e:
            logger.error(f"Error sweeping expired broker codes: {e}", exc_info=True)


async def start_broker_context(context: BrokerContext) -> BrokerContext:
    """Start background tasks. Call once at application startup."""
    if context.sweeper is None:
        context.sweeper = asyncio.create_task(
            _sweep_expired_codes(
                context.store, context.settings.store_sweep_interval_seconds
            )
        )
        logger.info(
            "✓ Broker code sweeper started (every %ds)",
            context.settings.store_sweep_interval_seconds,
        )
    return context


async def cleanup_broker_context(context: BrokerContext) -> None:
    """Stop background tasks and release resources. Call at shutdown."""
    logger.info("Starting cleanup of broker context...")

    if context.sweeper is not None:
        context.sweeper.cancel()
        try:
            await context.sweeper
        except asyncio.CancelledError:
            pass
        context.sweeper = None

    await context.store.close()
    await context.upstream.aclose()
    await context.verifier.aclose()
    logger.info("✓ Broker context cleanup completed")


@asynccontextmanager
async def broker_lifespan(context: BrokerContext) -> AsyncIterator[BrokerContext]:
    """Run a broker context for the lifetime of an application.

    Args:
        context: A built context

    Yields:
        BrokerContext: The started context
    """
    await start_broker_context(context)
    try:
        yield context
    finally:
        await cleanup_broker_context(context)
