"""
AccountRegistry: holds every logged-in analytics account and its adapter.

Usage:
    registry = AccountRegistry(accounts_path, secret_store, transport, shared)
    registry.load()
    account = await registry.login("https://umami.example.com", ProviderType.UMAMI,
                                   AccountCredentials(username="me", password="..."))
    provider = registry.provider_for(account.id)

Account metadata is kept in ``accounts.json``; credentials go to the secret
store scoped by account id. Each account gets its own adapter instance,
chosen once by provider type when the account is configured.

Mutations are announced to subscribers (``subscribe``) so the app context can
purge caches and notification triggers; removing the last account announces
ALL_ACCOUNTS_REMOVED.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from insightflow.errors import DecodeError
from insightflow.fileio import load_json, write_json_atomic
from insightflow.models import AccountCredentials, ProviderType, strip_scheme
from insightflow.providers.analytics.base import AnalyticsProvider, normalize_server_url
from insightflow.providers.analytics.factory import create_provider
from insightflow.secrets import SecretKey, SecretStore
from insightflow.shared_credentials import SharedCredentials, WidgetCredentials
from insightflow.transport import Transport

logger = logging.getLogger(__name__)


class AccountEvent(str, Enum):
    ADDED = "added"
    UPDATED = "updated"
    REMOVED = "removed"
    ACTIVE_CHANGED = "activeChanged"
    ALL_ACCOUNTS_REMOVED = "allAccountsRemoved"


@dataclass(frozen=True)
class AnalyticsAccount:
    id: str
    name: str
    server_url: str
    provider_type: ProviderType
    credentials: AccountCredentials = field(default_factory=AccountCredentials, repr=False)
    sites: Optional[List[str]] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def display_name(self) -> str:
        return self.name or strip_scheme(self.server_url)

    def to_metadata(self) -> Dict[str, Any]:
        """Everything except credentials."""
        return {
            "id": self.id,
            "name": self.name,
            "serverURL": self.server_url,
            "providerType": self.provider_type.value,
            "sites": self.sites,
            "createdAt": self.created_at.isoformat(),
        }

    @classmethod
    def from_metadata(cls, data: Dict[str, Any], credentials: AccountCredentials) -> "AnalyticsAccount":
        try:
            created_at = datetime.fromisoformat(data["createdAt"]) if data.get("createdAt") else None
            return cls(
                id=str(data["id"]),
                name=str(data.get("name") or ""),
                server_url=str(data["serverURL"]),
                provider_type=ProviderType(data["providerType"]),
                credentials=credentials,
                sites=list(data["sites"]) if data.get("sites") is not None else None,
                created_at=created_at or datetime.now(timezone.utc),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise DecodeError(f"Invalid account record: {e}") from e


Listener = Callable[[AccountEvent, Optional[AnalyticsAccount]], Awaitable[None]]


class AccountRegistry:
    def __init__(
        self,
        store_path: Path,
        secrets: SecretStore,
        transport: Transport,
        shared: Optional[SharedCredentials] = None,
        provider_factory: Callable[[ProviderType, Transport], AnalyticsProvider] = create_provider,
    ) -> None:
        self.store_path = Path(store_path)
        self._secrets = secrets
        self._transport = transport
        self._shared = shared
        self._provider_factory = provider_factory
        self._accounts: List[AnalyticsAccount] = []
        self._providers: Dict[str, AnalyticsProvider] = {}
        self._active_id: Optional[str] = None
        self._listeners: List[Listener] = []

    # Queries

    @property
    def accounts(self) -> List[AnalyticsAccount]:
        return list(self._accounts)

    @property
    def active_account(self) -> Optional[AnalyticsAccount]:
        return self.get(self._active_id) if self._active_id else None

    def get(self, account_id: str) -> Optional[AnalyticsAccount]:
        return next((a for a in self._accounts if a.id == account_id), None)

    def _require(self, account_id: str) -> AnalyticsAccount:
        account = self.get(account_id)
        if account is None:
            raise KeyError(f"Unknown account: {account_id}")
        return account

    def provider_for(self, account_id: str) -> AnalyticsProvider:
        self._require(account_id)
        return self._providers[account_id]

    async def resolve_site(self, website_id: str, account_id: Optional[str] = None) -> Tuple[AnalyticsAccount, AnalyticsProvider]:
        """
        Find the account serving ``website_id``. Site ids are only unique per
        account, so pass ``account_id`` whenever it is known; otherwise the
        active account is tried first, then the others in order.
        """
        if account_id is not None:
            return self._require(account_id), self.provider_for(account_id)
        candidates = sorted(self._accounts, key=lambda a: a.id != self._active_id)
        for account in candidates:
            provider = self._providers[account.id]
            websites = await provider.get_websites()
            if any(w.id == website_id for w in websites):
                return account, provider
        raise KeyError(f"No account serves website {website_id}")

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    async def _emit(self, event: AccountEvent, account: Optional[AnalyticsAccount]) -> None:
        for listener in list(self._listeners):
            await listener(event, account)

    # Persistence

    def load(self) -> None:
        """Read account metadata and credentials from disk and configure one adapter per account."""
        data = load_json(self.store_path, default={}) or {}
        self._accounts = []
        self._providers = {}
        for record in data.get("accounts", []):
            try:
                credentials = self._load_credentials(str(record["id"]))
                account = AnalyticsAccount.from_metadata(record, credentials)
            except (DecodeError, KeyError, TypeError) as e:
                logger.warning("Skipping unreadable account record: %s", e)
                continue
            self._accounts.append(account)
            self._providers[account.id] = self._configured_provider(account)

        active_id = data.get("activeAccountId")
        if self.get(active_id or "") is None:
            active_id = self._accounts[0].id if self._accounts else None
        self._active_id = active_id
        logger.info("Loaded %d analytics account(s)", len(self._accounts))

    def _save(self) -> None:
        write_json_atomic(
            self.store_path,
            {"accounts": [a.to_metadata() for a in self._accounts], "activeAccountId": self._active_id},
        )

    def _load_credentials(self, account_id: str) -> AccountCredentials:
        store = self._secrets.scoped(account_id)
        return AccountCredentials(
            token=store.load(SecretKey.TOKEN),
            api_key=store.load(SecretKey.API_KEY),
            username=store.load(SecretKey.USERNAME),
        )

    def _save_credentials(self, account: AnalyticsAccount) -> None:
        store = self._secrets.scoped(account.id)
        store.save(account.server_url, SecretKey.SERVER_URL)
        store.save(account.provider_type.value, SecretKey.PROVIDER_TYPE)
        for key, value in (
            (SecretKey.TOKEN, account.credentials.token),
            (SecretKey.API_KEY, account.credentials.api_key),
            (SecretKey.USERNAME, account.credentials.username),
        ):
            if value:
                store.save(value, key)
            else:
                store.delete(key)

    def _configured_provider(self, account: AnalyticsAccount, provider: Optional[AnalyticsProvider] = None) -> AnalyticsProvider:
        provider = provider or self._provider_factory(account.provider_type, self._transport)
        provider.configure(account.server_url, account.credentials, account.sites)
        return provider

    def _write_projection(self, account: AnalyticsAccount) -> None:
        if self._shared is None:
            return
        self._shared.save(
            WidgetCredentials(
                server_url=account.server_url,
                token=account.credentials.secret,
                provider_type=account.provider_type,
                sites=account.sites,
            )
        )

    # Commands

    async def login(
        self,
        server_url: str,
        provider_type: ProviderType,
        credentials: AccountCredentials,
        name: str = "",
    ) -> AnalyticsAccount:
        """
        Authenticate against the server and register the account.
        AuthError and NetworkError propagate to the caller.
        """
        provider = self._provider_factory(provider_type, self._transport)
        resolved = await provider.authenticate(server_url, credentials)
        account = AnalyticsAccount(
            id=str(uuid.uuid4()),
            name=name,
            server_url=normalize_server_url(server_url),
            provider_type=ProviderType(provider_type),
            credentials=resolved.without_password(),
            sites=[] if provider.manages_sites else None,
        )
        return await self.add_account(account, provider)

    async def add_account(self, account: AnalyticsAccount, provider: Optional[AnalyticsProvider] = None) -> AnalyticsAccount:
        """
        Register ``account``. An existing account for the same server and
        provider type is replaced in place and keeps its id, so its caches and
        notification settings survive a re-login.
        """
        existing = next(
            (
                a
                for a in self._accounts
                if a.server_url == account.server_url and a.provider_type == account.provider_type
            ),
            None,
        )
        if existing is not None:
            account = replace(
                account,
                id=existing.id,
                name=account.name or existing.name,
                created_at=existing.created_at,
                sites=account.sites if account.sites else existing.sites,
            )
            self._accounts[self._accounts.index(existing)] = account
            event = AccountEvent.UPDATED
        else:
            self._accounts.append(account)
            event = AccountEvent.ADDED

        self._save_credentials(account)
        self._providers[account.id] = self._configured_provider(account, provider)
        became_active = self._active_id is None
        if became_active:
            self._active_id = account.id
        self._save()
        logger.info("%s %s account %s", event.value.capitalize(), account.provider_type.display_name, account.display_name)

        await self._emit(event, account)
        if became_active or account.id == self._active_id:
            self._write_projection(account)
        if became_active:
            await self._emit(AccountEvent.ACTIVE_CHANGED, account)
        return account

    async def remove_account(self, account_id: str) -> None:
        account = self._require(account_id)
        self._accounts = [a for a in self._accounts if a.id != account_id]
        provider = self._providers.pop(account_id, None)
        if provider is not None:
            provider.clear_configuration()
        self._secrets.scoped(account_id).delete_all()

        was_active = self._active_id == account_id
        if was_active:
            self._active_id = self._accounts[0].id if self._accounts else None
        self._save()
        logger.info("Removed account %s", account.display_name)
        await self._emit(AccountEvent.REMOVED, account)

        if not self._accounts:
            self._secrets.delete_all()
            if self._shared is not None:
                self._shared.delete()
            await self._emit(AccountEvent.ALL_ACCOUNTS_REMOVED, None)
        elif was_active:
            active = self.active_account
            self._write_projection(active)
            await self._emit(AccountEvent.ACTIVE_CHANGED, active)

    async def set_active(self, account_id: str) -> AnalyticsAccount:
        account = self._require(account_id)
        if self._active_id != account_id:
            self._active_id = account_id
            self._save()
            await self._emit(AccountEvent.ACTIVE_CHANGED, account)
        self._write_projection(account)
        return account

    async def update_account_sites(self, account_id: str, sites: List[str]) -> AnalyticsAccount:
        account = replace(self._require(account_id), sites=list(sites))
        self._accounts = [account if a.id == account_id else a for a in self._accounts]
        self._providers[account_id] = self._configured_provider(account, self._providers.get(account_id))
        self._save()
        if account_id == self._active_id:
            self._write_projection(account)
        await self._emit(AccountEvent.UPDATED, account)
        return account

    async def add_site(self, account_id: str, domain: str) -> str:
        """Validate and track a site on an account whose provider manages its own site list."""
        provider = self.provider_for(account_id)
        normalized = await provider.add_site(domain)
        await self.update_account_sites(account_id, provider.sites)
        return normalized

    async def remove_site(self, account_id: str, domain: str) -> None:
        provider = self.provider_for(account_id)
        provider.remove_site(domain)
        await self.update_account_sites(account_id, provider.sites)

    async def migrate_from_legacy_credentials(self) -> Optional[AnalyticsAccount]:
        """
        Turn single-account credentials stored unscoped (older installs) into a
        registered account. Does nothing once any account exists.
        """
        if self._accounts:
            return None
        server_url = self._secrets.load(SecretKey.SERVER_URL)
        raw_type = self._secrets.load(SecretKey.PROVIDER_TYPE)
        if not server_url or not raw_type:
            return None
        try:
            provider_type = ProviderType(raw_type)
        except ValueError:
            logger.warning("Ignoring legacy credentials with unknown provider %r", raw_type)
            return None
        credentials = AccountCredentials(
            token=self._secrets.load(SecretKey.TOKEN),
            api_key=self._secrets.load(SecretKey.API_KEY),
            username=self._secrets.load(SecretKey.USERNAME),
        )
        if credentials.is_empty:
            return None
        account = AnalyticsAccount(
            id=str(uuid.uuid4()),
            name="",
            server_url=server_url,
            provider_type=provider_type,
            credentials=credentials,
            sites=[] if provider_type == ProviderType.PLAUSIBLE else None,
        )
        for key in SecretKey:
            self._secrets.delete(key)
        logger.info("Migrated legacy %s credentials to account %s", provider_type.display_name, account.id)
        return await self.add_account(account)
