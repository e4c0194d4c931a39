"""Domain ports (interfaces) for dependency inversion."""

from abc import ABC, abstractmethod
from typing import Any


# Hey future me, ISecureStore is the keychain stand-in! Plain bytes in, plain bytes out, keyed by
# fixed strings like "authorizationManager". It's SYNCHRONOUS on purpose: persistence is write-through
# inside the session manager's lock, and a sync store makes "state changed" and "state saved" one step.
# Implementations live in infrastructure/persistence/secure_store.py.
class ISecureStore(ABC):
    """Port for encrypted/secure key-value persistence."""

    @abstractmethod
    def get(self, key: str) -> bytes | None:
        """Return the stored value, or None if the key is absent."""
        pass

    @abstractmethod
    def set(self, key: str, value: bytes) -> None:
        """Store a value, replacing any previous one."""
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove a key. Deleting a missing key is not an error."""
        pass


class ISpotifyClient(ABC):
    """Port for the Spotify Web API operations the core needs."""

    @abstractmethod
    async def get_authorization_url(
        self, state: str, scopes: list[str], show_dialog: bool = False
    ) -> str:
        """
        Generate Spotify OAuth authorization URL.

        Args:
            state: State parameter for CSRF protection
            scopes: Scopes to request
            show_dialog: Force the approval dialog even if already approved

        Returns:
            Authorization URL
        """
        pass

    @abstractmethod
    async def exchange_code(self, code: str) -> dict[str, Any]:
        """
        Exchange authorization code for tokens.

        Args:
            code: Authorization code from the redirect

        Returns:
            Token response with access_token, refresh_token, expires_in
        """
        pass

    @abstractmethod
    async def refresh_token(self, refresh_token: str) -> dict[str, Any]:
        """
        Refresh access token.

        Args:
            refresh_token: Refresh token

        Returns:
            Token response with new access_token and expires_in
        """
        pass

    @abstractmethod
    async def get_current_user(self, access_token: str) -> dict[str, Any]:
        """
        Get the profile of the user the token belongs to.

        Args:
            access_token: OAuth access token

        Returns:
            User profile object
        """
        pass

    @abstractmethod
    async def get_playlist(
        self, playlist_id: str, access_token: str, fields: str | None = None
    ) -> dict[str, Any]:
        """
        Get playlist details.

        Args:
            playlist_id: Spotify playlist ID
            access_token: OAuth access token
            fields: Optional field filter (e.g. "snapshot_id")

        Returns:
            Playlist object (possibly filtered)
        """
        pass

    @abstractmethod
    async def get_playlist_items(
        self,
        playlist_id: str,
        access_token: str,
        limit: int = 100,
        offset: int = 0,
    ) -> dict[str, Any]:
        """
        Get one page of playlist items.

        Args:
            playlist_id: Spotify playlist ID
            access_token: OAuth access token
            limit: Page size (max 100)
            offset: Index of the first item

        Returns:
            Paging object with items, offset, total, next
        """
        pass

    @abstractmethod
    async def get_next_page(
        self, page: dict[str, Any], access_token: str
    ) -> dict[str, Any] | None:
        """
        Follow the `next` link of a paging object.

        Args:
            page: Previously fetched paging object
            access_token: OAuth access token

        Returns:
            The next page, or None if this was the last one
        """
        pass

    @abstractmethod
    async def remove_playlist_items(
        self,
        playlist_id: str,
        items: list[dict[str, Any]],
        access_token: str,
        snapshot_id: str | None = None,
    ) -> dict[str, Any]:
        """
        Remove specific occurrences of items from a playlist.

        Args:
            playlist_id: Spotify playlist ID
            items: [{"uri": ..., "positions": [...]}, ...] (max 100)
            access_token: OAuth access token
            snapshot_id: Snapshot the positions refer to

        Returns:
            Response with the new snapshot_id
        """
        pass


__all__ = ["ISecureStore", "ISpotifyClient"]
