"""
cloudbase_manager.tier3_platform.manager
─────────────────────────────────────────
Entry point. ``CloudBase`` owns the connection context and a set of
environments, one of which is current; the service properties act on the
current environment.

Usage:
    manager = create_manager(secret_id="AKID...", secret_key="...", env_id="prod-1a2b3c")
    await manager.functions.list_functions()

    manager.add_environment("test-4d5e6f")
    manager.switch_env("test-4d5e6f")
"""
from __future__ import annotations

from typing import Any

import httpx

from cloudbase_manager.tier0_core.config import ManagerConfig
from cloudbase_manager.tier0_core.credentials import CloudBaseContext
from cloudbase_manager.tier0_core.errors import ConfigurationError
from cloudbase_manager.tier0_core.logging import get_logger
from cloudbase_manager.tier2_services.common import CommonService
from cloudbase_manager.tier2_services.database import DatabaseService
from cloudbase_manager.tier2_services.env import EnvService
from cloudbase_manager.tier2_services.function import FunctionService
from cloudbase_manager.tier2_services.hosting import HostingService
from cloudbase_manager.tier2_services.object_store import ObjectStore
from cloudbase_manager.tier2_services.storage import StorageService
from cloudbase_manager.tier3_platform.environment import Environment

log = get_logger(__name__)

CURRENT_ENVIRONMENT_IS_NULL = "current environment is null"


class EnvironmentManager:
    def __init__(self, context: CloudBaseContext, **env_options: Any) -> None:
        self.context = context
        self._env_options = env_options
        self._envs: dict[str, Environment] = {}
        self._current: Environment | None = None

    def add(self, env_id: str) -> Environment:
        """Register ``env_id`` (idempotent). The first environment added becomes current."""
        env = self._envs.get(env_id)
        if env is None:
            env = Environment(self.context, env_id, **self._env_options)
            self._envs[env_id] = env
        if self._current is None:
            self._current = env
        return env

    def remove(self, env_id: str) -> None:
        # the current environment stays usable until another one is switched in
        self._envs.pop(env_id, None)

    def get(self, env_id: str) -> Environment | None:
        return self._envs.get(env_id)

    def switch_env(self, env_id: str) -> bool:
        env = self._envs.get(env_id)
        if env is None:
            return False
        self._current = env
        log.debug("manager.switch_env", env_id=env_id)
        return True

    def get_current_env(self) -> Environment:
        if self._current is None:
            raise ConfigurationError(CURRENT_ENVIRONMENT_IS_NULL)
        return self._current

    def __contains__(self, env_id: str) -> bool:
        return env_id in self._envs


class CloudBase:
    """
    Control-plane client. ``secret_id`` and ``secret_key`` must be given
    together or not at all (then the process environment supplies them).
    ``transport``, ``config`` and ``object_store`` are injection points for
    tests and custom deployments.
    """

    def __init__(
        self,
        secret_id: str | None = None,
        secret_key: str | None = None,
        token: str | None = None,
        env_id: str | None = None,
        proxy: str | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        config: ManagerConfig | None = None,
        object_store: ObjectStore | None = None,
    ) -> None:
        self.context = CloudBaseContext.create(secret_id, secret_key, token, proxy)
        self.environment_manager = EnvironmentManager(
            self.context, transport=transport, config=config, object_store=object_store
        )
        self.environment_manager.add(env_id or "")

    def add_environment(self, env_id: str) -> Environment:
        return self.environment_manager.add(env_id)

    def current_environment(self) -> Environment:
        return self.environment_manager.get_current_env()

    def switch_env(self, env_id: str) -> bool:
        return self.environment_manager.switch_env(env_id)

    @property
    def env(self) -> EnvService:
        return self.current_environment().env

    @property
    def functions(self) -> FunctionService:
        return self.current_environment().functions

    @property
    def storage(self) -> StorageService:
        return self.current_environment().storage

    @property
    def database(self) -> DatabaseService:
        return self.current_environment().database

    @property
    def hosting(self) -> HostingService:
        return self.current_environment().hosting

    def common_service(self, service: str = "tcb", version: str | None = None) -> CommonService:
        return self.current_environment().common_service(service, version)


def create_manager(
    secret_id: str | None = None,
    secret_key: str | None = None,
    token: str | None = None,
    env_id: str | None = None,
    proxy: str | None = None,
    **options: Any,
) -> CloudBase:
    """Plain factory; every call returns a new, independent manager."""
    return CloudBase(secret_id, secret_key, token, env_id, proxy, **options)


__all__ = ["CloudBase", "EnvironmentManager", "create_manager"]
