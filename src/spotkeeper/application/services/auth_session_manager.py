"""Authorization session manager.

Hey future me - this is THE owner of Spotify credentials. Everything that touches tokens goes
through here:

    begin_authorization() -> user approves in browser -> complete_authorization(redirect_url)
        -> tokens persisted -> auto refresh armed -> ... -> deauthorize()

Concurrency rules (read before touching anything):
- ONE asyncio.Lock serializes every mutation of the credential, the account list and the store.
- Network calls (code exchange, refresh, profile) run OUTSIDE the lock. Before the call we capture
  the session generation; after it we re-take the lock and only commit if nothing invalidated the
  session in between. deauthorize() and switch_account() bump the generation, so a refresh that
  raced a logout can never resurrect the tokens.
- Concurrent refresh_if_needed() callers share ONE in-flight refresh task.

Persistence is write-through: every committed change is written to the secure store before the
lock is released. Client secrets and the OAuth state are never persisted.
"""

import asyncio
import logging
import secrets
from collections.abc import Callable, Iterable
from datetime import UTC, datetime, timedelta
from urllib.parse import parse_qs, urlsplit

from spotkeeper.application.services.spotify_auth_service import SpotifyAuthService
from spotkeeper.application.workers.token_refresh_worker import TokenRefreshTimer
from spotkeeper.config.settings import SpotifySettings
from spotkeeper.domain.entities import Account, AuthorizationState, Credential, TokenSet
from spotkeeper.domain.exceptions import (
    AccessDeniedError,
    AccountNotFoundError,
    InvalidRedirectError,
    NotAuthorizedError,
    StateMismatchError,
    TokenExchangeError,
    TokenRefreshException,
    ValidationException,
)
from spotkeeper.domain.ports import ISecureStore, ISpotifyClient
from spotkeeper.infrastructure.observability.logging import mask_secret, set_correlation_id
from spotkeeper.infrastructure.persistence.repositories import SessionRepository

logger = logging.getLogger(__name__)

ChangeListener = Callable[["AuthSessionManager"], None]


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _query_value(query: dict[str, list[str]], name: str) -> str | None:
    values = query.get(name)
    return values[0] if values else None


class AuthSessionManager:
    """Owns the OAuth2 authorization-code lifecycle for one or more Spotify accounts."""

    def __init__(
        self,
        settings: SpotifySettings,
        client: ISpotifyClient,
        store: ISecureStore,
        *,
        multi_account: bool = False,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the manager.

        Args:
            settings: Spotify settings (client id/secret, redirect URI, margin)
            client: Spotify client used for token and profile calls
            store: Secure key-value store for persistence
            multi_account: Keep a list of accounts instead of one credential
            clock: Returns "now" (tests freeze time with this)

        Raises:
            ConfigurationError: If the settings can't authorize anything
        """
        settings.require_credentials()
        self._settings = settings
        self._clock = clock or _utc_now
        self._auth = SpotifyAuthService(settings, client, clock=self._clock)
        self._repository = SessionRepository(store)
        self._multi_account = multi_account
        self._margin = timedelta(seconds=settings.refresh_margin_seconds)

        self._lock = asyncio.Lock()
        self._credential = self._new_credential()
        self._accounts: list[Account] = []
        self._current_user_id: str | None = None
        self._generation = 0
        self._authorization_in_flight = False
        self._is_retrieving_tokens = False
        self._refresh_task: asyncio.Task[Credential] | None = None
        self._listeners: list[ChangeListener] = []
        self._timer = TokenRefreshTimer(self.on_refresh_timer_fired, clock=self._clock)

    def _new_credential(self) -> Credential:
        return Credential(
            client_id=self._settings.client_id,
            client_secret=self._settings.client_secret,
        )

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def multi_account(self) -> bool:
        return self._multi_account

    @property
    def credential(self) -> Credential:
        """Copy of the active credential."""
        return self._credential.copy()

    @property
    def authorization_state(self) -> AuthorizationState:
        if self._credential.is_authorized():
            return AuthorizationState.AUTHORIZED
        if self._authorization_in_flight:
            return AuthorizationState.AUTHORIZATION_IN_FLIGHT
        return AuthorizationState.UNAUTHORIZED

    @property
    def is_retrieving_tokens(self) -> bool:
        """True while an authorization code is being exchanged."""
        return self._is_retrieving_tokens

    @property
    def generation(self) -> int:
        """Bumped whenever the active session is replaced or cleared."""
        return self._generation

    @property
    def accounts(self) -> list[Account]:
        """Copies of the stored accounts, in display order."""
        return [account.copy() for account in self._accounts]

    @property
    def current_user_id(self) -> str | None:
        return self._current_user_id

    @property
    def current_account(self) -> Account | None:
        account = self._find_account(self._current_user_id)
        return account.copy() if account else None

    @property
    def refresh_timer(self) -> TokenRefreshTimer:
        return self._timer

    def is_authorized(self, required_scopes: Iterable[str] = ()) -> bool:
        return self._credential.is_authorized(required_scopes)

    def current_access_token(self) -> str:
        """Return the in-memory access token without refreshing it.

        Raises:
            NotAuthorizedError: If no access token is present
        """
        if self._credential.access_token is None:
            raise NotAuthorizedError()
        return self._credential.access_token

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_change_listener(self, listener: ChangeListener) -> Callable[[], None]:
        """Register a callback run after every committed change.

        Returns:
            A function that unregisters the listener
        """
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    # Listener failures are logged with a traceback but never undo the committed change.
    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception as e:
                logger.exception("Authorization change listener failed: %s", e)

    # ------------------------------------------------------------------
    # Internal helpers (call with the lock held)
    # ------------------------------------------------------------------

    def _find_account(self, user_id: str | None) -> Account | None:
        if user_id is None:
            return None
        for account in self._accounts:
            if account.user_id == user_id:
                return account
        return None

    # Hey future me - callers build the NEW state, save it, and only then assign it to self. If the
    # store write raises, memory still matches what is persisted and the caller sees the error.
    def _save_locked(
        self, credential: Credential, accounts: list[Account], current_user_id: str | None
    ) -> None:
        if self._multi_account:
            self._repository.save_accounts(accounts, current_user_id)
        else:
            self._repository.save_credential(credential)

    def _replace_account(self, accounts: list[Account], account: Account) -> list[Account]:
        """Return a new list with account in place of the entry with the same user id."""
        updated = list(accounts)
        for i, existing in enumerate(updated):
            if existing.user_id == account.user_id:
                updated[i] = account
                return updated
        updated.append(account)
        return updated

    def _arm_timer_locked(self) -> None:
        if not self._credential.is_authorized() or self._credential.expiration_date is None:
            self._timer.cancel()
            return
        self._timer.schedule(self._credential.expiration_date - self._margin, self._generation)

    def _clear_active_locked(self) -> None:
        self._credential.clear_tokens()
        self._authorization_in_flight = False
        self._generation += 1
        self._timer.cancel()

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    # Hey future me - a corrupt or foreign (different client_id) store must NEVER crash startup.
    # We log a warning and start logged-out so the user can simply authorize again. The stale
    # data stays in the store until the next successful write replaces it.
    async def restore(self) -> None:
        """Load the persisted session and arm auto refresh if it is authorized."""
        async with self._lock:
            secret = self._settings.client_secret
            try:
                if self._multi_account:
                    accounts, current_user_id = self._repository.load_accounts(secret)
                else:
                    credential = self._repository.load_credential(secret)
            except ValidationException as e:
                logger.warning(
                    "Couldn't decode persisted session, starting unauthenticated: %s",
                    e.message,
                )
                return

            if self._multi_account:
                matching = [
                    a for a in accounts if a.credential.client_id == self._settings.client_id
                ]
                if len(matching) != len(accounts):
                    logger.warning(
                        "Ignoring %d persisted account(s) created for a different client id",
                        len(accounts) - len(matching),
                    )
                self._accounts = matching
                current = self._find_account(current_user_id)
                self._current_user_id = current.user_id if current else None
                if current is not None:
                    self._credential = current.credential.copy()
                logger.info(
                    "Restored %d account(s), current: %s",
                    len(self._accounts),
                    self._current_user_id,
                )
            else:
                if credential is None:
                    logger.debug("No persisted credential found")
                    return
                if credential.client_id != self._settings.client_id:
                    logger.warning(
                        "Persisted credential belongs to a different client id, "
                        "starting unauthenticated"
                    )
                    return
                self._credential = credential
                logger.info("Restored persisted credential")

            self._generation += 1
            self._arm_timer_locked()
        self._notify()

    # ------------------------------------------------------------------
    # Authorization
    # ------------------------------------------------------------------

    async def begin_authorization(
        self, scopes: list[str] | None = None, show_dialog: bool | None = None
    ) -> str:
        """Issue a fresh state and build the authorization URL.

        Any previously issued URL stops being accepted.

        Args:
            scopes: Scopes to request (configured defaults if None)
            show_dialog: Force Spotify's approval dialog (configured default if None)

        Returns:
            The URL the user must open
        """
        async with self._lock:
            state = self._credential.rotate_state()
            url = await self._auth.build_authorization_url(state, scopes, show_dialog)
            self._authorization_in_flight = True
        logger.info("Authorization requested (state %s)", mask_secret(state))
        return url

    # Listen up, the order of checks matters:
    # 1. redirect must point at OUR callback (scheme/host/path) -> InvalidRedirectError
    # 2. state must match the last issued one                 -> StateMismatchError
    #    ...and from here on the state is CONSUMED (rotated), success or not. Replaying the
    #    same URL therefore fails at step 2.
    # 3. error=access_denied -> AccessDeniedError, other error -> TokenExchangeError
    # 4. no code at all      -> InvalidRedirectError
    async def complete_authorization(self, redirect_url: str) -> Credential:
        """Consume the redirect and exchange its code for tokens.

        Args:
            redirect_url: The full callback URL Spotify redirected to

        Returns:
            Copy of the newly authorized credential

        Raises:
            InvalidRedirectError: If the URL isn't our callback or has no code
            StateMismatchError: If the state doesn't match the last issued one
            AccessDeniedError: If the user declined
            TokenExchangeError: If Spotify reported another error or the exchange failed
            NotAuthorizedError: If the session was cleared while tokens were retrieved
        """
        set_correlation_id()
        received = urlsplit(redirect_url)
        expected = urlsplit(self._settings.redirect_uri)
        if (
            received.scheme.lower() != expected.scheme.lower()
            or received.netloc.lower() != expected.netloc.lower()
            or received.path.rstrip("/") != expected.path.rstrip("/")
        ):
            logger.warning(
                "Rejected redirect to unexpected callback %s://%s",
                received.scheme,
                received.netloc,
            )
            raise InvalidRedirectError("Redirect URL does not match the configured callback")

        query = parse_qs(received.query)
        received_state = _query_value(query, "state")
        code = _query_value(query, "code")
        error = _query_value(query, "error")

        async with self._lock:
            # Compare bytes: compare_digest rejects non-ASCII str and the state comes from the URL.
            if received_state is None or not secrets.compare_digest(
                received_state.encode("utf-8"), self._credential.state.encode("utf-8")
            ):
                logger.warning("Authorization redirect rejected: state mismatch")
                raise StateMismatchError()
            self._credential.rotate_state()
            self._authorization_in_flight = False
            generation = self._generation

        if error:
            if error == "access_denied":
                logger.info("User denied the authorization request")
                raise AccessDeniedError()
            raise TokenExchangeError(f"Spotify reported an authorization error: {error}")
        if not code:
            raise InvalidRedirectError("Redirect URL contains neither a code nor an error")

        self._is_retrieving_tokens = True
        try:
            tokens = await self._auth.exchange_code(code)
            profile = (
                await self._auth.get_current_user(tokens.access_token)
                if self._multi_account
                else None
            )
        finally:
            self._is_retrieving_tokens = False

        async with self._lock:
            if generation != self._generation:
                logger.info("Discarding retrieved tokens: session changed during the exchange")
                raise NotAuthorizedError("The session changed while tokens were being retrieved")

            credential = Credential(
                client_id=self._settings.client_id,
                client_secret=self._settings.client_secret,
                state=self._credential.state,
            )
            credential.apply_tokens(tokens)
            accounts = self._accounts
            current_user_id = self._current_user_id
            if profile is not None:
                accounts = self._replace_account(
                    accounts,
                    Account(
                        user_id=profile.id,
                        credential=credential,
                        display_name=profile.display_name,
                    ),
                )
                current_user_id = profile.id

            self._save_locked(credential, accounts, current_user_id)
            self._credential = credential
            self._accounts = accounts
            self._current_user_id = current_user_id
            self._generation += 1
            self._arm_timer_locked()
            result = credential.copy()

        if profile is not None:
            logger.info("Authorized Spotify account %s", profile.id)
        else:
            logger.info("Authorized Spotify session")
        self._notify()
        return result

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def refresh_if_needed(self, force: bool = False) -> Credential:
        """Refresh the access token when it is close to expiring.

        Without force this is a no-op while the token is valid for longer than
        the safety margin. Concurrent callers share one refresh request.

        Returns:
            Copy of the (possibly refreshed) active credential

        Raises:
            NotAuthorizedError: If there is nothing to refresh, or the session
                was cleared while the refresh was running
            TokenRefreshException: If the refresh failed (tokens unchanged)
        """
        async with self._lock:
            if not self._credential.is_authorized():
                raise NotAuthorizedError()
            if not force and not self._credential.is_expiring(self._margin, self._clock()):
                return self._credential.copy()

            task = self._refresh_task
            if task is None or task.done():
                task = asyncio.create_task(
                    self._refresh(
                        self._generation,
                        self._current_user_id,
                        self._credential.refresh_token or "",
                    ),
                    name="spotify-token-refresh",
                )
                task.add_done_callback(self._refresh_task_done)
                self._refresh_task = task

        return await asyncio.shield(task)

    def _refresh_task_done(self, task: "asyncio.Task[Credential]") -> None:
        if self._refresh_task is task:
            self._refresh_task = None
        # Mark the exception retrieved; every awaiting caller already got it.
        if not task.cancelled():
            task.exception()

    async def _refresh(
        self, generation: int, user_id: str | None, refresh_token: str
    ) -> Credential:
        tokens = await self._auth.refresh(refresh_token)

        async with self._lock:
            if generation == self._generation:
                result = self._commit_refresh_locked(self._current_user_id, tokens)
            else:
                result = self._commit_stale_refresh_locked(user_id, refresh_token, tokens)

        logger.info("Access token refreshed, expires at %s", tokens.expiration_date.isoformat())
        self._notify()
        return result

    def _commit_refresh_locked(self, user_id: str | None, tokens: TokenSet) -> Credential:
        """Apply refreshed tokens to the active credential and its account."""
        credential = self._credential.copy()
        credential.apply_tokens(tokens)
        accounts = self._accounts
        account = self._find_account(user_id)
        if account is not None:
            updated = account.copy()
            updated.credential = credential.copy()
            accounts = self._replace_account(accounts, updated)

        self._save_locked(credential, accounts, self._current_user_id)
        self._credential = credential
        self._accounts = accounts
        self._arm_timer_locked()
        return credential.copy()

    # Hey future me - the user switched accounts while the refresh was on the wire. The tokens are
    # still good for the account they were requested for, so store them THERE (matched by user_id and
    # the refresh token we used). After a logout the account is gone and the result is dropped.
    # A switch away and back (A -> B -> A) lands here too; then the account is active again and the
    # active credential must get the rotated refresh token as well.
    def _commit_stale_refresh_locked(
        self, user_id: str | None, refresh_token: str, tokens: TokenSet
    ) -> Credential:
        account = self._find_account(user_id)
        if account is None or account.credential.refresh_token != refresh_token:
            logger.info("Discarding token refresh result: session was cleared while refreshing")
            raise NotAuthorizedError("The session was deauthorized while refreshing the token")
        if user_id == self._current_user_id:
            return self._commit_refresh_locked(user_id, tokens)

        updated = account.copy()
        updated.credential.apply_tokens(tokens)
        accounts = self._replace_account(self._accounts, updated)
        self._save_locked(self._credential, accounts, self._current_user_id)
        self._accounts = accounts
        return updated.credential.copy()

    async def access_token(self) -> str:
        """Return a usable access token, refreshing it first if it is about to expire.

        A failed refresh falls back to the current token while it is still valid.

        Raises:
            NotAuthorizedError: If not authorized
            TokenRefreshException: If the refresh failed and the token has expired
        """
        try:
            await self.refresh_if_needed(force=False)
        except TokenRefreshException as e:
            if self._credential.is_expiring(timedelta(0), self._clock()):
                raise
            logger.warning(
                "Token refresh failed, using current token until it expires: %s", e.message
            )
        return self.current_access_token()

    async def schedule_auto_refresh(self) -> None:
        """Arm the refresh timer for the active credential (disarm if unauthorized)."""
        async with self._lock:
            self._arm_timer_locked()

    async def on_refresh_timer_fired(self, generation: int) -> None:
        """Timer callback: refresh unless the fire belongs to an older session."""
        if generation != self._generation:
            logger.debug(
                "Ignoring refresh timer from generation %d (current %d)",
                generation,
                self._generation,
            )
            return
        try:
            await self.refresh_if_needed(force=True)
        except (TokenRefreshException, NotAuthorizedError) as e:
            logger.warning("Automatic token refresh failed: %s", e.message)

    # ------------------------------------------------------------------
    # Deauthorization and accounts
    # ------------------------------------------------------------------

    async def deauthorize(self, user_id: str | None = None) -> None:
        """Log out: clear tokens, disarm the timer and delete persisted data.

        In multi-account mode this removes one account (the current one by
        default) and keeps the others.

        Raises:
            AccountNotFoundError: If user_id names no stored account
        """
        async with self._lock:
            if not self._multi_account:
                self._repository.delete_credential()
                self._clear_active_locked()
                logger.info("Deauthorized Spotify session")
            else:
                target = user_id if user_id is not None else self._current_user_id
                if target is None:
                    self._clear_active_locked()
                else:
                    account = self._find_account(target)
                    if account is None:
                        raise AccountNotFoundError(target)
                    accounts = [a for a in self._accounts if a is not account]
                    is_current = target == self._current_user_id
                    current_user_id = None if is_current else self._current_user_id
                    self._repository.save_accounts(accounts, current_user_id)
                    self._accounts = accounts
                    self._current_user_id = current_user_id
                    if is_current:
                        self._clear_active_locked()
                    logger.info("Removed Spotify account %s", target)
        self._notify()

    async def switch_account(self, user_id: str) -> Account:
        """Make a stored account the active one.

        Raises:
            AccountNotFoundError: If no stored account has this user id
        """
        async with self._lock:
            account = self._find_account(user_id)
            if account is None:
                raise AccountNotFoundError(user_id)
            credential = account.credential.copy()
            self._save_locked(credential, self._accounts, user_id)
            self._credential = credential
            self._current_user_id = user_id
            self._authorization_in_flight = False
            self._generation += 1
            self._arm_timer_locked()
            result = account.copy()
        logger.info("Switched to Spotify account %s", user_id)
        self._notify()
        return result

    async def remove_accounts(self, user_ids: Iterable[str]) -> None:
        """Remove several accounts at once; removing the current one logs out.

        Unknown user ids are ignored.
        """
        targets = set(user_ids)
        async with self._lock:
            accounts = [a for a in self._accounts if a.user_id not in targets]
            is_current = self._current_user_id in targets
            current_user_id = None if is_current else self._current_user_id
            self._repository.save_accounts(accounts, current_user_id)
            removed = len(self._accounts) - len(accounts)
            self._accounts = accounts
            self._current_user_id = current_user_id
            if is_current:
                self._clear_active_locked()
        logger.info("Removed %d Spotify account(s)", removed)
        self._notify()

    async def move_account(self, user_id: str, index: int) -> None:
        """Move an account to a new position in the list (clamped to the list bounds).

        Raises:
            AccountNotFoundError: If no stored account has this user id
        """
        async with self._lock:
            account = self._find_account(user_id)
            if account is None:
                raise AccountNotFoundError(user_id)
            accounts = [a for a in self._accounts if a is not account]
            index = max(0, min(index, len(accounts)))
            accounts.insert(index, account)
            self._repository.save_accounts(accounts, self._current_user_id)
            self._accounts = accounts
        self._notify()

    async def close(self) -> None:
        """Disarm the refresh timer and cancel any refresh in flight."""
        self._timer.cancel()
        task = self._refresh_task
        if task is not None and not task.done():
            task.cancel()
