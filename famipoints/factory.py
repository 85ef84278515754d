"""
Service wiring: pick the configured backend once and hand out shared instances.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from famipoints.auth_service import AuthService, DatabaseAuthService, RestApiAuthService
from famipoints.config import ServiceType, Settings, get_settings, is_configured
from famipoints.data_service import DataService, DatabaseDataService, RestApiDataService
from famipoints.db import DatabaseClient
from famipoints.errors import ConfigurationError
from famipoints.http_client import FileTokenStore, InMemoryTokenStore, RestApiClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Services:
    """The two services a consumer needs, built from one configuration."""

    auth: AuthService
    data: DataService


class ServiceFactory:
    """
    Lazily builds and caches one auth and one data service.

    Configuration is read on first access to a getter, not at
    construction; configuration errors therefore surface at first use.
    Both services share the same backend client so a sign-in through the
    auth service is visible to the data service.
    """

    def __init__(self, load_settings: Callable[[], Settings] = get_settings):
        self._load_settings = load_settings
        self._config: Optional[Settings] = None
        self._auth_service: Optional[AuthService] = None
        self._data_service: Optional[DataService] = None
        self._database: Optional[DatabaseClient] = None
        self._rest_client: Optional[RestApiClient] = None

    def get_config(self) -> Settings:
        if self._config is None:
            self._config = self._load_settings()
        return self._config

    def get_auth_service(self) -> AuthService:
        if self._auth_service is None:
            service_type = self._service_type()
            if service_type == ServiceType.DATABASE:
                self._auth_service = DatabaseAuthService(self._database_client())
            else:
                self._auth_service = RestApiAuthService(self._api_client())
            logger.info("Auth service: %s", self._auth_service.__class__.__name__)
        return self._auth_service

    def get_data_service(self) -> DataService:
        if self._data_service is None:
            service_type = self._service_type()
            if service_type == ServiceType.DATABASE:
                self._data_service = DatabaseDataService(self._database_client())
            else:
                self._data_service = RestApiDataService(self._api_client())
            logger.info("Data service: %s", self._data_service.__class__.__name__)
        return self._data_service

    def build(self) -> Services:
        return Services(auth=self.get_auth_service(), data=self.get_data_service())

    def reset(self) -> None:
        """Drop cached services, release their clients and re-read configuration."""
        if self._database is not None:
            self._database.close()
        if self._rest_client is not None:
            self._rest_client.close()
        self._auth_service = None
        self._data_service = None
        self._database = None
        self._rest_client = None
        self._config = None
        # get_settings is lru_cached.
        cache_clear = getattr(self._load_settings, "cache_clear", None)
        if cache_clear is not None:
            cache_clear()

    def _service_type(self) -> ServiceType:
        raw = self.get_config().service_type
        try:
            return ServiceType(raw)
        except ValueError:
            raise ConfigurationError(f"Unsupported service type: {raw}") from None

    def _database_client(self) -> DatabaseClient:
        if self._database is None:
            url = self.get_config().database_url
            if not is_configured(url):
                raise ConfigurationError(
                    "Database configuration is missing or using placeholder values. "
                    "Set FAMIPOINTS_DATABASE_URL."
                )
            self._database = DatabaseClient(url)
        return self._database

    def _api_client(self) -> RestApiClient:
        if self._rest_client is None:
            config = self.get_config()
            if not is_configured(config.api_base_url) or not is_configured(config.api_key):
                raise ConfigurationError(
                    "REST API configuration missing: api_base_url and api_key are required"
                )
            token_store = (
                FileTokenStore(config.token_file) if config.token_file else InMemoryTokenStore()
            )
            self._rest_client = RestApiClient(
                config.api_base_url,
                config.api_key,
                token_store=token_store,
                timeout=config.request_timeout,
            )
        return self._rest_client


def create_services(settings: Settings) -> Services:
    """Build both services from explicit, already-loaded settings."""
    return ServiceFactory(lambda: settings).build()
