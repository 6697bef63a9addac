"""
Per-(user, account) OAuth credential lifecycle.

Credentials are stored as JSON under the correlation store's ``token:``
namespace and are never used within ``SAFETY_MARGIN_SECONDS`` of expiry:
such a credential is refreshed first. Anything that makes a credential
unusable (missing record, unparsable JSON, refresh rejected or unreachable)
takes the same path: one debounced "session expired" notice, then a full
cleanup of the account.
"""
from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional

from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials

from correlation_store import CorrelationStore

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"
SAFETY_MARGIN_SECONDS = 60
DEFAULT_GRANT_LIFETIME = 3600


class RefreshFailed(RuntimeError):
    """Raised by a refresher when the provider did not hand back a usable access token."""


@dataclass
class TokenGrant:
    access_token: str
    expiry: float  # epoch seconds
    refresh_token: Optional[str] = None


@dataclass
class StoredCredential:
    account: str
    access_token: str
    refresh_token: Optional[str]
    expiry: float  # epoch seconds

    def to_json(self) -> str:
        return json.dumps(
            {
                "access_token": self.access_token,
                "refresh_token": self.refresh_token,
                "expiry": int(self.expiry * 1000),
            }
        )

    @staticmethod
    def from_json(account: str, raw: str) -> "StoredCredential":
        """Parse a stored record; raises ValueError when it is not usable."""
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("credential record is not an object")
        access_token = data.get("access_token")
        expiry_ms = data.get("expiry")
        if not isinstance(access_token, str) or not access_token:
            raise ValueError("credential record has no access token")
        if isinstance(expiry_ms, bool) or not isinstance(expiry_ms, (int, float)):
            raise ValueError("credential record has no expiry")
        refresh_token = data.get("refresh_token")
        return StoredCredential(
            account=account,
            access_token=access_token,
            refresh_token=refresh_token if isinstance(refresh_token, str) and refresh_token else None,
            expiry=float(expiry_ms) / 1000.0,
        )

    def is_fresh(self, now: float, margin: float = SAFETY_MARGIN_SECONDS) -> bool:
        return now < self.expiry - margin


Refresher = Callable[[str], TokenGrant]
ExpiryNotifier = Callable[[str, str], None]


def expiry_epoch(value: Optional[datetime], fallback: float) -> float:
    if value is None:
        return fallback
    # google-auth reports expiry as a naive UTC datetime.
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


def google_refresher(
    client_id: Optional[str],
    client_secret: Optional[str],
    *,
    token_uri: str = GOOGLE_TOKEN_URI,
) -> Refresher:
    """Build a refresher that exchanges a refresh token at Google's token endpoint."""

    def refresh(refresh_token: str) -> TokenGrant:
        if not (client_id and client_secret):
            raise RefreshFailed("Google OAuth client is not configured.")
        credentials = Credentials(
            token=None,
            refresh_token=refresh_token,
            token_uri=token_uri,
            client_id=client_id,
            client_secret=client_secret,
        )
        try:
            credentials.refresh(Request())
        except (RefreshError, TransportError, ValueError) as exc:
            raise RefreshFailed(str(exc)) from exc
        if not credentials.token:
            raise RefreshFailed("Token endpoint returned no access token.")
        return TokenGrant(
            access_token=credentials.token,
            expiry=expiry_epoch(credentials.expiry, time.time() + DEFAULT_GRANT_LIFETIME),
            refresh_token=credentials.refresh_token,
        )

    return refresh


class CredentialLifecycle:
    def __init__(
        self,
        store: CorrelationStore,
        *,
        refresher: Refresher,
        notifier: ExpiryNotifier,
        clock: Callable[[], float] = time.time,
        safety_margin: float = SAFETY_MARGIN_SECONDS,
    ) -> None:
        self.store = store
        self.refresher = refresher
        self.notifier = notifier
        self.clock = clock
        self.safety_margin = safety_margin

    # ---------- Account set ----------
    def accounts(self, user_id: str) -> List[str]:
        return self.store.get_accounts(user_id)

    def active_account(self, user_id: str) -> Optional[str]:
        return self.store.get_active_account(user_id)

    def link_account(self, user_id: str, account: str, grant: TokenGrant) -> StoredCredential:
        """Persist a freshly authorized credential and make its account active."""
        credential = StoredCredential(
            account=account,
            access_token=grant.access_token,
            refresh_token=grant.refresh_token,
            expiry=grant.expiry,
        )
        self.store.put_credential_record(user_id, account, credential.to_json())
        accounts = self.store.get_accounts(user_id)
        if account not in accounts:
            accounts.append(account)
            self.store.put_accounts(user_id, accounts)
        self.store.set_active_account(user_id, account)
        self.store.clear_expiry_notified(user_id, account)
        logger.info("Linked %s for user %s", account, user_id)
        return credential

    def switch_active(self, user_id: str, account: str) -> bool:
        if account not in self.store.get_accounts(user_id):
            return False
        self.store.set_active_account(user_id, account)
        return True

    def unlink(self, user_id: str, account: str) -> None:
        """User-requested removal; same bookkeeping as an expiry, without the notice."""
        self.cleanup(user_id, account)

    # ---------- Validity ----------
    def get_valid_credential(self, user_id: str) -> Optional[StoredCredential]:
        account = self.store.get_active_account(user_id)
        if not account:
            return None
        return self.get_account_credential(user_id, account)

    def get_account_credential(self, user_id: str, account: str) -> Optional[StoredCredential]:
        raw = self.store.get_credential_record(user_id, account)
        if raw is None:
            logger.warning("No stored credential for %s (user %s)", account, user_id)
            self._expire(user_id, account)
            return None
        try:
            credential = StoredCredential.from_json(account, raw)
        except (TypeError, ValueError) as exc:
            logger.warning("Unparsable credential for %s (user %s): %s", account, user_id, exc)
            self._expire(user_id, account)
            return None

        if credential.is_fresh(self.clock(), self.safety_margin):
            return credential

        refreshed = self._refresh(user_id, credential)
        if refreshed is None:
            self._expire(user_id, account)
        return refreshed

    def _refresh(self, user_id: str, credential: StoredCredential) -> Optional[StoredCredential]:
        if not credential.refresh_token:
            logger.warning("Credential for %s has no refresh token", credential.account)
            return None
        try:
            grant = self.refresher(credential.refresh_token)
        except RefreshFailed as exc:
            # Revoked grants and provider outages are deliberately not told apart.
            logger.warning("Refresh failed for %s (user %s): %s", credential.account, user_id, exc)
            return None
        updated = StoredCredential(
            account=credential.account,
            access_token=grant.access_token,
            refresh_token=grant.refresh_token or credential.refresh_token,
            expiry=grant.expiry,
        )
        self.store.put_credential_record(user_id, credential.account, updated.to_json())
        logger.debug("Refreshed credential for %s", credential.account)
        return updated

    def _expire(self, user_id: str, account: str) -> None:
        self.notify_expired(user_id, account)
        self.cleanup(user_id, account)

    # ---------- Expiry handling ----------
    def notify_expired(self, user_id: str, account: str) -> None:
        if self.store.is_expiry_notified(user_id, account):
            return
        try:
            self.notifier(user_id, account)
        except Exception as exc:  # noqa: BLE001 - notification is best-effort, cleanup must proceed
            logger.warning("Failed to send expiry notice for %s to %s: %s", account, user_id, exc)
            return
        self.store.mark_expiry_notified(user_id, account)

    def cleanup(self, user_id: str, account: str) -> None:
        self.store.delete_credential_record(user_id, account)

        accounts = self.store.get_accounts(user_id)
        if account in accounts:
            accounts.remove(account)
            self.store.put_accounts(user_id, accounts)

        active = self.store.get_active_account(user_id)
        if active == account or (active and active not in accounts):
            if accounts:
                self.store.set_active_account(user_id, accounts[0])
            else:
                self.store.clear_active_account(user_id)

        self.store.delete_push_subscription(user_id, account)
