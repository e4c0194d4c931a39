"""Session persistence on top of a secure key-value store."""

import logging
from datetime import datetime

from pydantic import BaseModel, Field, ValidationError, field_validator

from spotkeeper.domain.entities import Account, Credential
from spotkeeper.domain.exceptions import ValidationException
from spotkeeper.domain.ports import ISecureStore
from spotkeeper.infrastructure.persistence.models import ensure_utc_aware

logger = logging.getLogger(__name__)

# Storage keys. Kept stable so data written by older releases still decodes.
AUTHORIZATION_MANAGER_KEY = "authorizationManager"
SPOTIFY_ACCOUNTS_KEY = "spotifyAccounts"


class CredentialRecord(BaseModel):
    """Persisted form of a Credential (no client secret, no state)."""

    client_id: str
    access_token: str | None = None
    refresh_token: str | None = None
    expiration_date: datetime | None = None
    scopes: list[str] = Field(default_factory=list)

    @field_validator("expiration_date")
    @classmethod
    def _utc_aware(cls, value: datetime | None) -> datetime | None:
        return ensure_utc_aware(value) if value is not None else None

    @classmethod
    def from_credential(cls, credential: Credential) -> "CredentialRecord":
        return cls(
            client_id=credential.client_id,
            access_token=credential.access_token,
            refresh_token=credential.refresh_token,
            expiration_date=credential.expiration_date,
            scopes=sorted(credential.scopes),
        )

    def to_credential(self, client_secret: str | None) -> Credential:
        return Credential(
            client_id=self.client_id,
            client_secret=client_secret,
            access_token=self.access_token,
            refresh_token=self.refresh_token,
            expiration_date=self.expiration_date,
            scopes=set(self.scopes),
        )


class AccountRecord(BaseModel):
    """Persisted form of an Account."""

    user_id: str
    display_name: str | None = None
    credential: CredentialRecord


class AccountsDocument(BaseModel):
    """Everything stored under the multi-account key."""

    accounts: list[AccountRecord] = Field(default_factory=list)
    current_user_id: str | None = None


# Hey future me - SessionRepository is the ONLY place that knows the on-disk JSON shape. The session
# manager hands it domain objects and gets domain objects back. Decode problems (corrupt JSON, a
# pydantic validation error, a broken token invariant) all surface as ValidationException so the
# manager has exactly one thing to catch when deciding "start unauthenticated".
# Writes are NOT caught here: a store that can't persist is a real error and must reach the caller.
class SessionRepository:
    """Load and save credentials and accounts through an ISecureStore."""

    def __init__(self, store: ISecureStore) -> None:
        """Initialize repository.

        Args:
            store: Secure key-value store holding the encoded documents
        """
        self._store = store

    @property
    def store(self) -> ISecureStore:
        return self._store

    # --- single account -------------------------------------------------

    def load_credential(self, client_secret: str | None = None) -> Credential | None:
        """Load the single persisted credential.

        Args:
            client_secret: Secret from configuration (secrets are never stored)

        Returns:
            The credential, or None if nothing is stored

        Raises:
            ValidationException: If the stored data can't be decoded
        """
        raw = self._store.get(AUTHORIZATION_MANAGER_KEY)
        if raw is None:
            return None
        try:
            record = CredentialRecord.model_validate_json(raw)
            return record.to_credential(client_secret)
        except (ValidationError, ValueError) as e:
            raise ValidationException(
                f"Couldn't decode stored credential: {e}"
            ) from e

    def save_credential(self, credential: Credential) -> None:
        """Persist the single credential."""
        payload = CredentialRecord.from_credential(credential).model_dump_json()
        self._store.set(AUTHORIZATION_MANAGER_KEY, payload.encode("utf-8"))
        logger.debug("Persisted credential for client %s", credential.client_id)

    def delete_credential(self) -> None:
        """Remove the single persisted credential."""
        self._store.delete(AUTHORIZATION_MANAGER_KEY)

    # --- multiple accounts ------------------------------------------------

    def load_accounts(
        self, client_secret: str | None = None
    ) -> tuple[list[Account], str | None]:
        """Load the stored accounts and the current-account pointer.

        Returns:
            Tuple of (accounts in stored order, current user id or None)

        Raises:
            ValidationException: If the stored data can't be decoded
        """
        raw = self._store.get(SPOTIFY_ACCOUNTS_KEY)
        if raw is None:
            return [], None
        try:
            document = AccountsDocument.model_validate_json(raw)
            accounts = [
                Account(
                    user_id=record.user_id,
                    credential=record.credential.to_credential(client_secret),
                    display_name=record.display_name,
                )
                for record in document.accounts
            ]
        except (ValidationError, ValueError) as e:
            raise ValidationException(f"Couldn't decode stored accounts: {e}") from e

        current = document.current_user_id
        if current is not None and all(a.user_id != current for a in accounts):
            logger.warning("Stored current account %s no longer exists", current)
            current = None
        return accounts, current

    def save_accounts(self, accounts: list[Account], current_user_id: str | None) -> None:
        """Persist all accounts, or delete the key when none remain."""
        if not accounts:
            self.delete_accounts()
            return
        document = AccountsDocument(
            accounts=[
                AccountRecord(
                    user_id=account.user_id,
                    display_name=account.display_name,
                    credential=CredentialRecord.from_credential(account.credential),
                )
                for account in accounts
            ],
            current_user_id=current_user_id,
        )
        self._store.set(SPOTIFY_ACCOUNTS_KEY, document.model_dump_json().encode("utf-8"))
        logger.debug("Persisted %d account(s)", len(accounts))

    def delete_accounts(self) -> None:
        """Remove all persisted accounts."""
        self._store.delete(SPOTIFY_ACCOUNTS_KEY)


__all__ = [
    "AUTHORIZATION_MANAGER_KEY",
    "SPOTIFY_ACCOUNTS_KEY",
    "AccountRecord",
    "AccountsDocument",
    "CredentialRecord",
    "SessionRepository",
]
