"""Application lifecycle management for startup and shutdown.

Hey future me - spotkeeper_session() is the ONE entry point an embedding app needs:

    async with spotkeeper_session() as ctx:
        url = await ctx.auth.begin_authorization()
        ...
        deduplicator = ctx.deduplicator_for(playlist_id, "Road Trip", total_items=412)
        alert = await deduplicator.find_and_remove_duplicates()

Startup order: logging -> settings check -> secure store -> HTTP client -> session manager
(restore + arm refresh) -> resolver. Shutdown runs in reverse, and ALWAYS runs, even when the body
raised: the refresh timer is disarmed and the HTTP client closed.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from spotkeeper.application.services.auth_session_manager import AuthSessionManager
from spotkeeper.application.services.duplicate_resolver import DuplicateResolver
from spotkeeper.application.use_cases.deduplicate_playlist import PlaylistDeduplicator
from spotkeeper.config import Settings, get_settings
from spotkeeper.domain.ports import ISecureStore
from spotkeeper.infrastructure.integrations.spotify_client import SpotifyClient
from spotkeeper.infrastructure.observability import configure_logging
from spotkeeper.infrastructure.persistence import SqlAlchemySecureStore, create_secure_store

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    """Everything a running spotkeeper session is made of."""

    settings: Settings
    client: SpotifyClient
    store: ISecureStore
    auth: AuthSessionManager
    resolver: DuplicateResolver

    def deduplicator_for(
        self, playlist_id: str, playlist_name: str, total_items: int = 0
    ) -> PlaylistDeduplicator:
        """Create a deduplicator for one playlist sharing this session's resolver."""
        return PlaylistDeduplicator(self.resolver, playlist_id, playlist_name, total_items)


# Listen future me, configure_logging() replaces the ROOT logger's handlers. Apps that already
# configured logging pass configure_logs=False.
@asynccontextmanager
async def spotkeeper_session(
    settings: Settings | None = None,
    *,
    store: ISecureStore | None = None,
    client: SpotifyClient | None = None,
    configure_logs: bool = True,
) -> AsyncGenerator[AppContext, None]:
    """Build, restore and tear down a spotkeeper session.

    Args:
        settings: Settings to use (environment/.env if None)
        store: Secure store override (STORAGE_BACKEND if None)
        client: Spotify client override
        configure_logs: Configure root logging from the settings

    Yields:
        The assembled AppContext

    Raises:
        ConfigurationError: If the Spotify credentials are missing
    """
    settings = settings or get_settings()
    if configure_logs:
        configure_logging(
            settings.log_level,
            settings.observability.log_json_format,
            settings.app_name,
        )

    # Fail fast before touching the filesystem or network
    settings.spotify.require_credentials()

    store = store or create_secure_store(settings.storage)
    client = client or SpotifyClient(settings.spotify)
    auth = AuthSessionManager(
        settings.spotify,
        client,
        store,
        multi_account=settings.storage.multi_account,
    )
    resolver = DuplicateResolver(
        client,
        auth.access_token,
        page_size=settings.spotify.playlist_page_size,
        batch_size=settings.spotify.removal_batch_size,
        max_concurrent_pages=settings.spotify.max_concurrent_page_fetches,
    )

    try:
        await auth.restore()
        logger.info(
            "%s session ready (authorized: %s, accounts: %d)",
            settings.app_name,
            auth.is_authorized(),
            len(auth.accounts),
        )
        yield AppContext(
            settings=settings,
            client=client,
            store=store,
            auth=auth,
            resolver=resolver,
        )
    finally:
        await auth.close()
        await client.close()
        if isinstance(store, SqlAlchemySecureStore):
            store.dispose()
        logger.info("%s session closed", settings.app_name)
