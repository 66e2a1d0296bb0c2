"""
cloudbase_manager.tier2_services.storage
─────────────────────────────────────────
Cloud storage operations on the environment bucket, or on any bucket and
region via the ``*_custom`` variants. Bulk work (uploads, metadata lookups,
grouped deletes) goes through ParallelTaskRunner, so one bad file never
aborts the batch; failures are reported per key.

A "directory" is a zero-byte object whose key ends with ``/``.
"""
from __future__ import annotations

import asyncio
import posixpath
from pathlib import Path
from typing import TYPE_CHECKING, Any

from cloudbase_manager.tier0_core.errors import CloudBaseError, NotFoundError, ValidationError
from cloudbase_manager.tier0_core.logging import get_logger
from cloudbase_manager.tier1_runtime.cloud_api import TCB_VERSION
from cloudbase_manager.tier1_runtime.parallel import DEFAULT_MAX_PARALLEL, ParallelTaskRunner
from cloudbase_manager.tier2_services.packer import is_ignored

if TYPE_CHECKING:
    from cloudbase_manager.tier3_platform.environment import Environment

log = get_logger(__name__)

LIST_PAGE_SIZE = 100
DELETE_GROUP_SIZE = 500
STORAGE_ACLS = ("READONLY", "PRIVATE", "ADMINWRITE", "ADMINONLY")


def cloud_dir_key(cloud_path: str) -> str:
    """``a/b`` → ``a/b/``; empty and ``/`` mean the bucket root (``""``)."""
    if not cloud_path or cloud_path == "/":
        return ""
    return cloud_path if cloud_path.endswith("/") else f"{cloud_path}/"


def walk_local_dir(directory: str | Path, ignore: str | list[str] | None = None) -> list[Path]:
    """Every file and directory under ``directory``, minus ignored paths."""
    root = Path(directory)
    patterns = [ignore] if isinstance(ignore, str) else list(ignore or [])
    paths = []
    for path in sorted(root.rglob("*")):
        if patterns and is_ignored(path.relative_to(root).as_posix(), patterns):
            continue
        paths.append(path)
    return paths


def _upload_summary(keys: list[str], results: list[Any]) -> dict[str, list[Any]]:
    uploaded: list[str] = []
    failed: list[dict[str, Any]] = []
    for key, result in zip(keys, results):
        if isinstance(result, BaseException):
            failed.append({
                "Key": key,
                "Code": getattr(result, "code", "") or type(result).__name__,
                "Message": str(result),
            })
        else:
            uploaded.append(key)
    return {"Uploaded": uploaded, "Failed": failed}


class StorageService:
    def __init__(self, environment: "Environment") -> None:
        self.environment = environment
        self._tcb = environment.cloud_service("tcb", TCB_VERSION)

    @property
    def store(self):
        return self.environment.object_store

    async def _location(self) -> tuple[str, str]:
        return await self.environment.storage_location()

    # ── Uploads ───────────────────────────────────────────────────────────────

    async def upload_file(self, local_path: str, cloud_path: str = "") -> dict[str, Any]:
        bucket, region = await self._location()
        return await self.upload_file_custom(local_path, cloud_path, bucket, region)

    async def upload_file_custom(
        self, local_path: str, cloud_path: str, bucket: str, region: str
    ) -> dict[str, Any]:
        """
        Upload one file. When ``local_path`` is a directory the file named
        like the last segment of ``cloud_path`` inside it is uploaded.
        """
        path = Path(local_path).resolve()
        if not path.exists():
            raise NotFoundError(f"local path {local_path!r} does not exist")
        if path.is_dir():
            path = path / posixpath.basename(cloud_path)
            if not path.is_file():
                raise NotFoundError(f"local file {str(path)!r} does not exist")
        key = cloud_path or path.name
        await self.store.upload_file(bucket, region, key, str(path))
        log.debug("storage.uploaded", bucket=bucket, key=key)
        return {"Key": key, "Bucket": bucket}

    async def upload_files(
        self,
        files: list[dict[str, str]],
        *,
        ignore: str | list[str] | None = None,
        parallel: int = DEFAULT_MAX_PARALLEL,
    ) -> dict[str, list[Any]]:
        bucket, region = await self._location()
        return await self.upload_files_custom(
            files, bucket, region, ignore=ignore, parallel=parallel
        )

    async def upload_files_custom(
        self,
        files: list[dict[str, str]],
        bucket: str,
        region: str,
        *,
        ignore: str | list[str] | None = None,
        parallel: int = DEFAULT_MAX_PARALLEL,
    ) -> dict[str, list[Any]]:
        """
        Upload ``[{"local_path", "cloud_path"}, ...]``. Returns
        ``{"Uploaded": [keys], "Failed": [{"Key", "Code", "Message"}]}``.
        """
        patterns = [ignore] if isinstance(ignore, str) else list(ignore or [])
        selected = [
            f for f in files or []
            if not (patterns and is_ignored(Path(f["local_path"]).as_posix(), patterns))
        ]
        keys = [f.get("cloud_path") or Path(f["local_path"]).name for f in selected]

        runner = ParallelTaskRunner(parallel)
        runner.load_tasks([
            lambda key=key, f=f: self.store.upload_file(bucket, region, key, f["local_path"])
            for key, f in zip(keys, selected)
        ])
        summary = _upload_summary(keys, await runner.run())
        log.info(
            "storage.upload_files",
            bucket=bucket,
            uploaded=len(summary["Uploaded"]),
            failed=len(summary["Failed"]),
        )
        return summary

    async def upload_directory(
        self,
        local_path: str,
        cloud_path: str = "",
        *,
        ignore: str | list[str] | None = None,
        parallel: int = DEFAULT_MAX_PARALLEL,
    ) -> dict[str, list[Any]]:
        bucket, region = await self._location()
        return await self.upload_directory_custom(
            local_path, cloud_path, bucket, region, ignore=ignore, parallel=parallel
        )

    async def upload_directory_custom(
        self,
        local_path: str,
        cloud_path: str,
        bucket: str,
        region: str,
        *,
        ignore: str | list[str] | None = None,
        parallel: int = DEFAULT_MAX_PARALLEL,
    ) -> dict[str, list[Any]]:
        """Mirror a local tree: directory markers first, then files."""
        root = Path(local_path).resolve()
        paths = await asyncio.to_thread(walk_local_dir, root, ignore)
        if not paths:
            return {"Uploaded": [], "Failed": []}

        dirs: list[str] = []
        files: list[tuple[str, Path]] = []
        for path in paths:
            key = posixpath.join(cloud_path or "", path.relative_to(root).as_posix())
            if path.is_dir():
                dirs.append(cloud_dir_key(key))
            else:
                files.append((key, path))

        dir_runner = ParallelTaskRunner(parallel)
        dir_runner.load_tasks([
            lambda key=key: self.store.put_object(bucket, region, key, b"") for key in dirs
        ])
        dir_summary = _upload_summary(dirs, await dir_runner.run())

        file_runner = ParallelTaskRunner(parallel)
        file_runner.load_tasks([
            lambda key=key, path=path: self.store.upload_file(bucket, region, key, str(path))
            for key, path in files
        ])
        file_keys = [key for key, _ in files]
        file_summary = _upload_summary(file_keys, await file_runner.run())

        log.info(
            "storage.upload_directory",
            bucket=bucket,
            dirs=len(dirs),
            files=len(files),
            failed=len(dir_summary["Failed"]) + len(file_summary["Failed"]),
        )
        return {
            "Uploaded": dir_summary["Uploaded"] + file_summary["Uploaded"],
            "Failed": dir_summary["Failed"] + file_summary["Failed"],
        }

    async def create_cloud_directory(self, cloud_path: str) -> None:
        bucket, region = await self._location()
        await self.create_cloud_directory_custom(cloud_path, bucket, region)

    async def create_cloud_directory_custom(
        self, cloud_path: str, bucket: str, region: str
    ) -> None:
        await self.store.put_object(bucket, region, cloud_dir_key(cloud_path), b"")

    # ── Listing ───────────────────────────────────────────────────────────────

    async def list_directory_files(self, cloud_path: str) -> list[dict[str, Any]]:
        return await self.walk_cloud_dir(cloud_path)

    async def walk_cloud_dir(self, prefix: str, marker: str = "") -> list[dict[str, Any]]:
        bucket, region = await self._location()
        return await self.walk_cloud_dir_custom(prefix, bucket, region, marker=marker)

    async def walk_cloud_dir_custom(
        self, prefix: str, bucket: str, region: str, *, marker: str = ""
    ) -> list[dict[str, Any]]:
        """Every object under ``prefix``, following truncated pages."""
        key_prefix = cloud_dir_key(prefix)
        objects: list[dict[str, Any]] = []
        while True:
            page = await self.store.list_objects(
                bucket, region, prefix=key_prefix, marker=marker, max_keys=LIST_PAGE_SIZE
            )
            objects.extend(page["Contents"])
            if not page["IsTruncated"] or not page["NextMarker"]:
                return objects
            marker = page["NextMarker"]

    async def get_bucket(
        self,
        bucket: str,
        region: str,
        *,
        prefix: str = "",
        marker: str = "",
        max_keys: int = LIST_PAGE_SIZE,
    ) -> dict[str, Any]:
        """One listing page."""
        return await self.store.list_objects(
            bucket, region, prefix=cloud_dir_key(prefix), marker=marker, max_keys=max_keys
        )

    async def get_file_info(self, cloud_path: str) -> dict[str, Any]:
        bucket, region = await self._location()
        head = await self.store.head_object(bucket, region, cloud_path)
        return {
            "Size": f"{head['content_length'] / 1024:.2f}",
            "Type": head["content_type"],
            "Date": head["last_modified"],
            "ETag": head["etag"],
        }

    async def get_files_info(
        self, cloud_paths: list[str], *, parallel: int = DEFAULT_MAX_PARALLEL
    ) -> list[Any]:
        """One entry per path, in order: the file info or the lookup error."""
        await self._location()
        runner = ParallelTaskRunner(parallel)
        runner.load_tasks([lambda p=p: self.get_file_info(p) for p in cloud_paths])
        return await runner.run()

    # ── Deletes ───────────────────────────────────────────────────────────────

    async def delete_file(self, cloud_paths: list[str]) -> None:
        bucket, region = await self._location()
        await self.delete_file_custom(cloud_paths, bucket, region)

    async def delete_file_custom(
        self, cloud_paths: list[str], bucket: str, region: str
    ) -> None:
        if not isinstance(cloud_paths, list) or not cloud_paths:
            raise ValidationError("cloud_paths must be a non-empty list")
        if any(not path or not isinstance(path, str) for path in cloud_paths):
            raise ValidationError("every cloud path must be a non-empty string")
        res = await self.store.delete_objects(bucket, region, cloud_paths)
        if res["Error"]:
            failed = [f"{e.get('Key')} : {e.get('Code')}" for e in res["Error"]]
            raise CloudBaseError(f"failed to delete some files: {failed}", code="DELETE_FAILED")

    async def delete_directory(self, cloud_path: str) -> dict[str, list[Any]]:
        bucket, region = await self._location()
        return await self.delete_directory_custom(cloud_path, bucket, region)

    async def delete_directory_custom(
        self,
        cloud_path: str,
        bucket: str,
        region: str,
        *,
        parallel: int = DEFAULT_MAX_PARALLEL,
    ) -> dict[str, list[Any]]:
        """
        Delete every object under the directory in groups of 500 keys and
        merge the per-group ``Deleted``/``Error`` lists. A group whose call
        fails outright reports each of its keys in ``Error``.
        """
        objects = await self.walk_cloud_dir_custom(cloud_path, bucket, region)
        if not objects:
            return {"Deleted": [], "Error": []}

        keys = [obj["Key"] for obj in objects]
        groups = [keys[i:i + DELETE_GROUP_SIZE] for i in range(0, len(keys), DELETE_GROUP_SIZE)]
        runner = ParallelTaskRunner(parallel)
        runner.load_tasks([
            lambda group=group: self.store.delete_objects(bucket, region, group)
            for group in groups
        ])
        results = await runner.run()

        deleted: list[Any] = []
        errors: list[Any] = []
        for group, result in zip(groups, results):
            if isinstance(result, BaseException):
                code = getattr(result, "code", "") or type(result).__name__
                errors.extend({"Key": k, "Code": code, "Message": str(result)} for k in group)
                continue
            deleted.extend(result["Deleted"])
            errors.extend(result["Error"])
        log.info("storage.delete_directory", bucket=bucket, deleted=len(deleted), failed=len(errors))
        return {"Deleted": deleted, "Error": errors}

    # ── ACL ───────────────────────────────────────────────────────────────────

    async def get_storage_acl(self) -> str:
        bucket, _ = await self._location()
        res = await self._tcb.request(
            "DescribeStorageACL", {"EnvId": self.environment.env_id, "Bucket": bucket}
        )
        return res.get("AclTag", "")

    async def set_storage_acl(self, acl: str) -> dict[str, Any]:
        if acl not in STORAGE_ACLS:
            raise ValidationError(f"invalid storage acl {acl!r}", fields={"acl": acl})
        bucket, _ = await self._location()
        return await self._tcb.request(
            "ModifyStorageACL",
            {"EnvId": self.environment.env_id, "Bucket": bucket, "AclTag": acl},
        )

    # ── Static website ────────────────────────────────────────────────────────

    async def get_website_config(self, bucket: str, region: str) -> dict[str, Any]:
        return await self.store.get_bucket_website(bucket, region)

    async def put_bucket_website(
        self,
        bucket: str,
        region: str,
        *,
        index_document: str,
        error_document: str | None = None,
        routing_rules: list[dict[str, str]] | None = None,
    ) -> dict[str, Any]:
        """
        ``routing_rules`` items take ``key_prefix_equals`` or
        ``http_error_code_returned_equals`` as the condition and
        ``replace_key_with`` or ``replace_key_prefix_with`` as the redirect.
        """
        configuration: dict[str, Any] = {"IndexDocument": {"Suffix": index_document}}
        if error_document:
            configuration["ErrorDocument"] = {"Key": error_document}
        if routing_rules:
            configuration["RoutingRules"] = [_routing_rule(rule) for rule in routing_rules]
        await self.store.put_bucket_website(bucket, region, configuration)
        return configuration


def _routing_rule(rule: dict[str, str]) -> dict[str, Any]:
    item: dict[str, Any] = {}
    if rule.get("key_prefix_equals"):
        item["Condition"] = {"KeyPrefixEquals": rule["key_prefix_equals"]}
    if rule.get("http_error_code_returned_equals"):
        item["Condition"] = {
            "HttpErrorCodeReturnedEquals": rule["http_error_code_returned_equals"]
        }
    if rule.get("replace_key_with"):
        item["Redirect"] = {"ReplaceKeyWith": rule["replace_key_with"]}
    if rule.get("replace_key_prefix_with"):
        item["Redirect"] = {"ReplaceKeyPrefixWith": rule["replace_key_prefix_with"]}
    return item


__all__ = ["StorageService", "cloud_dir_key", "walk_local_dir", "STORAGE_ACLS"]
