"""
cloudbase_manager.tier3_platform.environment
─────────────────────────────────────────────
One CloudBase environment: its id, the caller's connection context, the
lazily loaded environment config (``DescribeEnvs`` for the id) and the
sub-service clients bound to it.

The config is loaded once, on first use, by ``ensure_ready()``. Concurrent
first callers share one ``DescribeEnvs`` call. Every operation that needs the
config (function namespace, storage bucket, database instance) awaits it
explicitly.

Usage:
    env = Environment(CloudBaseContext.create(secret_id, secret_key), "prod-1a2b3c")
    config = await env.ensure_ready()
    bucket, region = await env.storage_location()
"""
from __future__ import annotations

import asyncio
from functools import cached_property
from typing import Any

import httpx

from cloudbase_manager.tier0_core.config import ManagerConfig, get_config
from cloudbase_manager.tier0_core.credentials import CloudBaseContext, resolve_credentials
from cloudbase_manager.tier0_core.errors import NotFoundError
from cloudbase_manager.tier0_core.logging import get_logger, log_context
from cloudbase_manager.tier1_runtime.cloud_api import CloudService
from cloudbase_manager.tier2_services.billing import BillingService
from cloudbase_manager.tier2_services.cam import CamService
from cloudbase_manager.tier2_services.common import CommonService
from cloudbase_manager.tier2_services.database import DatabaseService
from cloudbase_manager.tier2_services.env import EnvService
from cloudbase_manager.tier2_services.function import FunctionService
from cloudbase_manager.tier2_services.hosting import HostingService
from cloudbase_manager.tier2_services.object_store import CosObjectStore, ObjectStore
from cloudbase_manager.tier2_services.storage import StorageService

log = get_logger(__name__)


class LazyEnvironmentConfig:
    """Loads the environment config once; later calls return the cached dict."""

    def __init__(self, env_id: str, env_service: EnvService) -> None:
        self.env_id = env_id
        self._env_service = env_service
        self._config: dict[str, Any] | None = None
        self._lock = asyncio.Lock()

    @property
    def loaded(self) -> bool:
        return self._config is not None

    async def ensure_ready(self) -> dict[str, Any]:
        if self._config is not None:
            return self._config
        async with self._lock:
            if self._config is None:
                with log_context(env_id=self.env_id):
                    info = await self._env_service.get_env_info()
                    env_info = info["EnvInfo"]
                    if not env_info.get("EnvId"):
                        raise NotFoundError(f"Environment {self.env_id} not found")
                    self._config = env_info
                    log.debug("environment.config_loaded")
        return self._config

    def reset(self) -> None:
        self._config = None


class Environment:
    def __init__(
        self,
        context: CloudBaseContext,
        env_id: str,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        config: ManagerConfig | None = None,
        object_store: ObjectStore | None = None,
    ) -> None:
        self.context = context
        self.env_id = env_id
        self._transport = transport
        self._config = config
        self._object_store = object_store
        self.lazy_config = LazyEnvironmentConfig(env_id, self.env)

    @property
    def config(self) -> ManagerConfig:
        return self._config or get_config()

    def cloud_service(
        self, service: str, version: str, base_params: dict[str, Any] | None = None
    ) -> CloudService:
        return CloudService(
            self.context,
            service,
            version,
            base_params,
            transport=self._transport,
            config=self._config,
        )

    async def ensure_ready(self) -> dict[str, Any]:
        return await self.lazy_config.ensure_ready()

    async def storage_location(self) -> tuple[str, str]:
        """(bucket, region) of the environment's storage; ``TCB_COS_REGION`` overrides the region."""
        env_config = await self.ensure_ready()
        storages = env_config.get("Storages") or []
        if not storages:
            raise NotFoundError(f"Environment {self.env_id} has no storage bucket")
        storage = storages[0]
        return storage["Bucket"], self.config.cos_region or storage["Region"]

    @property
    def object_store(self) -> ObjectStore:
        if self._object_store is None:
            self._object_store = CosObjectStore(self.context, self._config)
        return self._object_store

    def get_auth_config(self) -> dict[str, Any]:
        """Credentials this environment signs with, as plain values."""
        credentials = resolve_credentials(self.context, self._config)
        return {
            "env_id": self.env_id,
            "secret_id": credentials.secret_id,
            "secret_key": credentials.secret_key.get_secret_value(),
            "token": (
                credentials.session_token.get_secret_value()
                if credentials.session_token
                else ""
            ),
            "proxy": credentials.proxy,
        }

    # ── Services ──────────────────────────────────────────────────────────────

    @cached_property
    def env(self) -> EnvService:
        return EnvService(self)

    @cached_property
    def functions(self) -> FunctionService:
        return FunctionService(self)

    @cached_property
    def storage(self) -> StorageService:
        return StorageService(self)

    @cached_property
    def database(self) -> DatabaseService:
        return DatabaseService(self)

    @cached_property
    def hosting(self) -> HostingService:
        return HostingService(self)

    @cached_property
    def cam(self) -> CamService:
        return CamService(self)

    @cached_property
    def billing(self) -> BillingService:
        return BillingService(self)

    def common_service(self, service: str = "tcb", version: str | None = None) -> CommonService:
        return CommonService(self, service, version)

    def __repr__(self) -> str:
        return f"Environment(env_id={self.env_id!r})"


__all__ = ["Environment", "LazyEnvironmentConfig"]
