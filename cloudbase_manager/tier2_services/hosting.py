"""
cloudbase_manager.tier2_services.hosting
─────────────────────────────────────────
Static website hosting: a dedicated bucket managed through TCB, its custom
domains and CDN settings. File operations reuse StorageService's custom
bucket/region variants against the hosting bucket.

Every file operation requires the hosting service to be ``online``;
otherwise InvalidOperationError is raised.
"""
from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any

from cloudbase_manager.tier0_core.errors import (
    CloudBaseError,
    InvalidOperationError,
    NotFoundError,
)
from cloudbase_manager.tier0_core.logging import get_logger
from cloudbase_manager.tier1_runtime.cloud_api import CDN_VERSION, TCB_VERSION
from cloudbase_manager.tier1_runtime.parallel import DEFAULT_MAX_PARALLEL

if TYPE_CHECKING:
    from cloudbase_manager.tier3_platform.environment import Environment

log = get_logger(__name__)

HOSTING_STATUS = {
    "init": "initializing",
    "process": "processing",
    "online": "online",
    "destroying": "destroying",
    "offline": "offline",
    "create_fail": "initialization failed",
    "destroy_fail": "destruction failed",
}


def _status_error(status: str) -> InvalidOperationError:
    label = HOSTING_STATUS.get(status, status)
    return InvalidOperationError(f"Static hosting is {label}; operation not allowed.")


def _result_code(res: dict[str, Any]) -> dict[str, Any]:
    return {"code": 0 if res.get("Result") == "succ" else -1, "requestId": res.get("RequestId", "")}


class HostingService:
    def __init__(self, environment: "Environment") -> None:
        self.environment = environment
        self._tcb = environment.cloud_service("tcb", TCB_VERSION)
        self._cdn = environment.cloud_service("cdn", CDN_VERSION)

    @property
    def storage(self):
        return self.environment.storage

    async def get_info(self) -> list[dict[str, Any]]:
        """Hosting records for the environment; ``Regoin`` is the platform's spelling."""
        await self.environment.ensure_ready()
        res = await self._tcb.request("DescribeStaticStore", {"EnvId": self.environment.env_id})
        return res.get("Data") or []

    async def _check_status(self) -> dict[str, Any]:
        hostings = await self.get_info()
        if not hostings:
            raise InvalidOperationError(
                "Static hosting is not enabled; enable it in the CloudBase console first."
            )
        website = hostings[0]
        if website.get("Status") != "online":
            raise _status_error(website.get("Status", ""))
        return website

    async def _bucket(self) -> tuple[str, str]:
        website = await self._check_status()
        return website["Bucket"], website["Regoin"]

    # ── Service lifecycle ─────────────────────────────────────────────────────

    async def enable_service(self) -> dict[str, Any]:
        hostings = await self.get_info()
        if hostings and hostings[0].get("Status") != "offline":
            raise CloudBaseError("Static hosting is already enabled.")
        res = await self._tcb.request("CreateStaticStore", {"EnvId": self.environment.env_id})
        log.info("hosting.enabled", env_id=self.environment.env_id, result=res.get("Result"))
        return _result_code(res)

    async def destroy_service(self) -> dict[str, Any]:
        """Only an empty, online (or previously failed-to-destroy) hosting can be destroyed."""
        if await self.list_files():
            raise InvalidOperationError("Static hosting still has files; cannot destroy.")
        hostings = await self.get_info()
        if not hostings:
            raise InvalidOperationError("Static hosting is not enabled.")
        status = hostings[0].get("Status", "")
        if status not in ("online", "destroy_fail"):
            raise _status_error(status)
        res = await self._tcb.request("DestroyStaticStore", {"EnvId": self.environment.env_id})
        log.info("hosting.destroyed", env_id=self.environment.env_id, result=res.get("Result"))
        return _result_code(res)

    # ── Files ─────────────────────────────────────────────────────────────────

    async def find_files(
        self, *, prefix: str = "", marker: str = "", max_keys: int = 100
    ) -> dict[str, Any]:
        bucket, region = await self._bucket()
        return await self.storage.get_bucket(
            bucket, region, prefix=prefix, marker=marker, max_keys=max_keys
        )

    async def list_files(self) -> list[dict[str, Any]]:
        bucket, region = await self._bucket()
        return await self.storage.walk_cloud_dir_custom("", bucket, region)

    async def upload_files(
        self,
        *,
        local_path: str | None = None,
        cloud_path: str = "",
        files: list[dict[str, str]] | None = None,
        ignore: str | list[str] | None = None,
        parallel: int = DEFAULT_MAX_PARALLEL,
    ) -> dict[str, list[Any]]:
        """
        Upload a directory (``local_path`` is a directory), a single file
        (``local_path`` is a file) and/or an explicit ``files`` list of
        ``{"local_path", "cloud_path"}`` entries.
        """
        bucket, region = await self._bucket()
        uploads = list(files or [])

        if local_path:
            path = Path(local_path).resolve()
            if not path.exists():
                raise NotFoundError(f"local path {local_path!r} does not exist")
            if path.is_dir():
                return await self.storage.upload_directory_custom(
                    str(path), cloud_path, bucket, region, ignore=ignore, parallel=parallel
                )
            uploads.append({"local_path": str(path), "cloud_path": cloud_path or path.name})

        return await self.storage.upload_files_custom(
            uploads, bucket, region, ignore=ignore, parallel=parallel
        )

    async def delete_files(self, cloud_path: str, *, is_dir: bool = False) -> dict[str, list[Any]]:
        bucket, region = await self._bucket()
        if is_dir:
            return await self.storage.delete_directory_custom(cloud_path, bucket, region)
        try:
            await self.storage.delete_file_custom([cloud_path], bucket, region)
        except CloudBaseError as exc:
            return {"Deleted": [], "Error": [exc.to_dict()]}
        return {"Deleted": [{"Key": cloud_path}], "Error": []}

    # ── Domains & CDN ─────────────────────────────────────────────────────────

    async def create_hosting_domain(self, domain: str, cert_id: str) -> dict[str, Any]:
        await self.environment.ensure_ready()
        return await self._tcb.request(
            "CreateHostingDomain",
            {"EnvId": self.environment.env_id, "Domain": domain, "CertId": cert_id},
        )

    async def delete_hosting_domain(self, domain: str) -> dict[str, Any]:
        await self.environment.ensure_ready()
        return await self._tcb.request(
            "DeleteHostingDomain", {"EnvId": self.environment.env_id, "Domain": domain}
        )

    async def tcb_check_resource(self, domains: list[str]) -> dict[str, Any]:
        return await self._cdn.request("TcbCheckResource", {"Domains": domains})

    async def tcb_modify_attribute(
        self, domain: str, domain_id: int, domain_config: dict[str, Any]
    ) -> dict[str, Any]:
        return await self._cdn.request(
            "TcbModifyAttribute",
            {"Domain": domain, "DomainId": domain_id, "DomainConfig": domain_config},
        )

    # ── Website documents ─────────────────────────────────────────────────────

    async def get_website_config(self) -> dict[str, Any]:
        bucket, region = await self._bucket()
        return await self.storage.get_website_config(bucket, region)

    async def set_website_document(
        self,
        index_document: str,
        error_document: str | None = None,
        routing_rules: list[dict[str, str]] | None = None,
    ) -> dict[str, Any]:
        bucket, region = await self._bucket()
        return await self.storage.put_bucket_website(
            bucket,
            region,
            index_document=index_document,
            error_document=error_document,
            routing_rules=routing_rules,
        )


__all__ = ["HostingService", "HOSTING_STATUS"]
