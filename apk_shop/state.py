"""Shared application state - settings and service instances."""

from apk_shop.config import Settings, get_settings
from apk_shop.db.base import Database
from apk_shop.services.access_gate import AccessGate
from apk_shop.services.account_service import AccountService
from apk_shop.services.analytics_service import AnalyticsService
from apk_shop.services.security import TokenSigner
from apk_shop.services.storage_service import StorageService
from apk_shop.services.version_service import VersionService

settings: Settings
storage: StorageService
database: Database
gate: AccessGate
accounts: AccountService
versions: VersionService
analytics: AnalyticsService


def configure(new_settings: Settings) -> None:
    """(Re)build every service instance from the given settings."""
    global settings, storage, database, gate, accounts, versions, analytics

    settings = new_settings
    storage = StorageService(base_dir=settings.data_dir)
    database = Database(settings.database_url)
    signer = TokenSigner(
        secret=settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
        expire_minutes=settings.access_token_expire_minutes,
    )
    gate = AccessGate(database, signer)
    accounts = AccountService(database, gate)
    versions = VersionService(database, storage, gate, max_bulk_files=settings.max_bulk_files)
    analytics = AnalyticsService(database)


configure(get_settings())
