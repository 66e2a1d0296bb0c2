"""
cloudbase_manager.tier2_services.database
──────────────────────────────────────────
Document database collections (flexdb) and data migration jobs (TCB).
Collection calls are addressed by the environment's database instance id
(``Databases[0].InstanceId`` in the environment config).
"""
from __future__ import annotations

import posixpath
from typing import TYPE_CHECKING, Any

from cloudbase_manager.tier0_core.errors import CloudBaseError, ValidationError
from cloudbase_manager.tier0_core.logging import get_logger
from cloudbase_manager.tier1_runtime.cloud_api import FLEXDB_VERSION, TCB_VERSION

if TYPE_CHECKING:
    from cloudbase_manager.tier3_platform.environment import Environment

log = get_logger(__name__)

DEFAULT_MGO_LIMIT = 100
DEFAULT_MGO_OFFSET = 0
DEFAULT_IMPORT_PREFIX = "tmp/db-imports/"


def _file_type(path: str) -> str:
    return posixpath.splitext(path)[1].lstrip(".")


class DatabaseService:
    def __init__(self, environment: "Environment") -> None:
        self.environment = environment
        self._tcb = environment.cloud_service("tcb", TCB_VERSION)
        self._flexdb = environment.cloud_service("flexdb", FLEXDB_VERSION)

    async def _tag(self) -> str:
        env_config = await self.environment.ensure_ready()
        databases = env_config.get("Databases") or []
        if not databases:
            raise CloudBaseError(
                f"Environment {self.environment.env_id} has no database instance",
                code="DATABASE_NOT_FOUND",
            )
        return databases[0]["InstanceId"]

    # ── Collections ───────────────────────────────────────────────────────────

    async def check_collection_exists(self, name: str) -> dict[str, Any]:
        """A failed lookup means "absent"; the error is reported, not raised."""
        try:
            res = await self.describe_collection(name)
        except CloudBaseError as exc:
            return {"RequestId": exc.request_id, "Msg": str(exc), "Exists": False}
        return {"RequestId": res.get("RequestId", ""), "Exists": True}

    async def create_collection(self, name: str) -> dict[str, Any]:
        tag = await self._tag()
        return await self._flexdb.request("CreateTable", {"Tag": tag, "TableName": name})

    async def create_collection_if_not_exists(self, name: str) -> dict[str, Any]:
        exists = await self.check_collection_exists(name)
        if exists["Exists"]:
            return {"RequestId": "", "IsCreated": False, "ExistsResult": exists}
        res = await self.create_collection(name)
        log.info("database.collection_created", collection=name)
        return {"RequestId": res.get("RequestId", ""), "IsCreated": True, "ExistsResult": exists}

    async def delete_collection(self, name: str) -> dict[str, Any]:
        exists = await self.check_collection_exists(name)
        if not exists["Exists"]:
            return exists
        tag = await self._tag()
        return await self._flexdb.request("DeleteTable", {"Tag": tag, "TableName": name})

    async def update_collection(
        self,
        name: str,
        *,
        create_indexes: list[dict[str, Any]] | None = None,
        drop_indexes: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        tag = await self._tag()
        return await self._flexdb.request(
            "UpdateTable",
            {
                "Tag": tag,
                "TableName": name,
                "CreateIndexes": create_indexes,
                "DropIndexes": drop_indexes,
            },
        )

    async def describe_collection(self, name: str) -> dict[str, Any]:
        tag = await self._tag()
        return await self._flexdb.request("DescribeTable", {"Tag": tag, "TableName": name})

    async def list_collections(
        self, limit: int | None = None, offset: int | None = None
    ) -> dict[str, Any]:
        """ListTables with ``TableName`` renamed to ``CollectionName`` under ``Collections``."""
        tag = await self._tag()
        res = await self._flexdb.request(
            "ListTables",
            {
                "Tag": tag,
                "MgoLimit": DEFAULT_MGO_LIMIT if limit is None else limit,
                "MgoOffset": DEFAULT_MGO_OFFSET if offset is None else offset,
            },
        )
        tables = res.pop("Tables", None) or []
        collections = []
        for table in tables:
            item = dict(table)
            item["CollectionName"] = item.pop("TableName", None)
            collections.append(item)
        res["Collections"] = collections
        return res

    async def check_index_exists(self, collection: str, index_name: str) -> dict[str, Any]:
        res = await self.describe_collection(collection)
        exists = any(index.get("Name") == index_name for index in res.get("Indexes") or [])
        return {"RequestId": res.get("RequestId", ""), "Exists": exists}

    # ── Distribution & migration ──────────────────────────────────────────────

    async def distribution(self) -> dict[str, Any]:
        return await self._tcb.request(
            "DescribeDbDistribution", {"EnvId": self.environment.env_id}
        )

    async def migrate_status(self, job_id: int) -> dict[str, Any]:
        return await self._tcb.request(
            "DatabaseMigrateQueryInfo", {"EnvId": self.environment.env_id, "JobId": job_id}
        )

    async def import_data(
        self,
        collection: str,
        *,
        file_path: str | None = None,
        object_key: str | None = None,
        file_type: str | None = None,
        object_key_prefix: str | None = None,
        **options: Any,
    ) -> dict[str, Any]:
        """
        Start an import job. A local ``file_path`` is first uploaded to
        ``<object_key_prefix><basename>`` in the environment bucket; an
        ``object_key`` already in the bucket is used as-is. ``file_type``
        defaults to the file extension. Extra keyword arguments are passed
        through as request fields (e.g. ``StopOnError``, ``ConflictMode``).
        """
        if file_path:
            key = posixpath.join(
                object_key_prefix or DEFAULT_IMPORT_PREFIX, posixpath.basename(file_path)
            )
            await self.environment.storage.upload_file(file_path, key)
        elif object_key:
            key = object_key
        else:
            raise ValidationError("Miss file.filePath or file.objectKey")

        log.info("database.import", collection=collection, object_key=key)
        return await self._tcb.request(
            "DatabaseMigrateImport",
            {
                "CollectionName": collection,
                "FilePath": key,
                "FileType": file_type or _file_type(key),
                "EnvId": self.environment.env_id,
                **options,
            },
        )

    async def export_data(
        self,
        collection: str,
        *,
        object_key: str | None = None,
        file_type: str | None = None,
        **options: Any,
    ) -> dict[str, Any]:
        if not object_key:
            raise ValidationError("Miss file.objectKey")
        return await self._tcb.request(
            "DatabaseMigrateExport",
            {
                "CollectionName": collection,
                "FilePath": object_key,
                "FileType": file_type or _file_type(object_key),
                "EnvId": self.environment.env_id,
                **options,
            },
        )


__all__ = ["DatabaseService", "DEFAULT_IMPORT_PREFIX"]
