"""
cloudbase_manager.tier2_services.common
────────────────────────────────────────
Pass-through caller for any action of the tcb, flexdb or scf APIs.
Parameters go out as given; no mapping is applied.

Usage:
    scf = manager.common_service("scf")
    res = await scf.call("ListFunctions", {"Namespace": "default"})
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Any

from cloudbase_manager.tier0_core.errors import ConfigurationError, ValidationError
from cloudbase_manager.tier1_runtime.cloud_api import FLEXDB_VERSION, SCF_VERSION, TCB_VERSION

if TYPE_CHECKING:
    from cloudbase_manager.tier3_platform.environment import Environment

DEFAULT_VERSIONS = {
    "tcb": TCB_VERSION,
    "flexdb": FLEXDB_VERSION,
    "scf": SCF_VERSION,
}


class CommonService:
    def __init__(
        self, environment: "Environment", service: str = "tcb", version: str | None = None
    ) -> None:
        if service not in DEFAULT_VERSIONS:
            raise ConfigurationError(
                f"Unsupported service {service!r}; expected one of {sorted(DEFAULT_VERSIONS)}"
            )
        self.environment = environment
        self.service = service
        self.version = version or DEFAULT_VERSIONS[service]
        self._client = environment.cloud_service(service, self.version)

    async def call(self, action: str, param: dict[str, Any] | None = None) -> dict[str, Any]:
        if not action:
            raise ValidationError("Missing required parameter Action")
        return await self._client.request(action, dict(param or {}))


__all__ = ["CommonService", "DEFAULT_VERSIONS"]
