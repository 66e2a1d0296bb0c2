"""
cloudbase_manager.tier2_services.object_store
──────────────────────────────────────────────
Object storage abstraction for environment buckets. COS speaks the S3
protocol at ``https://cos.<region>.myqcloud.com``, so the production store
is a boto3 S3 client pointed there. Clients are built on the event-loop
thread from a store-owned boto3 session; only the bound SDK call runs in a
worker thread.

Listing results, delete results and CORS rules use the S3 response shapes
(``Contents``/``IsTruncated``/``NextMarker``, ``Deleted``/``Error``,
``AllowedOrigins``...) for both stores.

Backed by: boto3 (S3-compatible client)
"""
from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from cloudbase_manager.tier0_core.config import ManagerConfig, get_config
from cloudbase_manager.tier0_core.credentials import CloudBaseContext, resolve_credentials
from cloudbase_manager.tier0_core.errors import (
    NotFoundError,
    RemoteServiceError,
    TransportError,
)
from cloudbase_manager.tier0_core.logging import get_logger

log = get_logger(__name__)

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NoSuchBucket"}
_NO_CONFIG_CODES = {"NoSuchCORSConfiguration", "NoSuchWebsiteConfiguration"}


def cos_endpoint(region: str) -> str:
    return f"https://cos.{region}.myqcloud.com"


@runtime_checkable
class ObjectStore(Protocol):
    async def put_object(self, bucket: str, region: str, key: str, body: bytes) -> None: ...

    async def upload_file(self, bucket: str, region: str, key: str, file_path: str) -> None: ...

    async def head_object(self, bucket: str, region: str, key: str) -> dict[str, Any]: ...

    async def list_objects(
        self,
        bucket: str,
        region: str,
        *,
        prefix: str = "",
        marker: str = "",
        max_keys: int = 100,
    ) -> dict[str, Any]: ...

    async def delete_object(self, bucket: str, region: str, key: str) -> None: ...

    async def delete_objects(
        self, bucket: str, region: str, keys: list[str]
    ) -> dict[str, list[dict[str, Any]]]: ...

    async def get_bucket_cors(self, bucket: str, region: str) -> list[dict[str, Any]]: ...

    async def put_bucket_cors(
        self, bucket: str, region: str, rules: list[dict[str, Any]]
    ) -> None: ...

    async def get_bucket_website(self, bucket: str, region: str) -> dict[str, Any]: ...

    async def put_bucket_website(
        self, bucket: str, region: str, configuration: dict[str, Any]
    ) -> None: ...


# ── COS via boto3 ─────────────────────────────────────────────────────────────

class CosObjectStore:
    """
    S3-compatible COS client. Credentials are resolved on every call the
    same way signed API requests resolve them. One boto3 client is kept per
    region and rebuilt when the credentials or proxy it was built with change.

    Must be driven from the event loop: ``_client`` touches the cache and
    the session, neither of which is shared with worker threads.
    """

    def __init__(
        self,
        context: CloudBaseContext | None = None,
        config: ManagerConfig | None = None,
    ) -> None:
        self._context = context or CloudBaseContext()
        self._config = config
        self._session = boto3.session.Session()
        # region -> ((secret id, secret key, token, proxy), client)
        self._clients: dict[str, tuple[tuple[str, str, str, str], Any]] = {}

    def _client(self, region: str) -> Any:
        config = self._config or get_config()
        credentials = resolve_credentials(self._context, self._config)
        secret_key = credentials.secret_key.get_secret_value()
        token = (
            credentials.session_token.get_secret_value() if credentials.session_token else ""
        )
        proxy = config.cos_proxy or credentials.proxy or config.http_proxy or ""
        built_with = (credentials.secret_id, secret_key, token, proxy)

        cached = self._clients.get(region)
        if cached is not None and cached[0] == built_with:
            return cached[1]

        client = self._session.client(
            "s3",
            region_name=region,
            endpoint_url=cos_endpoint(region),
            aws_access_key_id=credentials.secret_id,
            aws_secret_access_key=secret_key,
            aws_session_token=token or None,
            config=BotoConfig(
                s3={"addressing_style": "virtual"},
                proxies={"http": proxy, "https": proxy} if proxy else None,
            ),
        )
        if cached is not None:
            log.debug("object_store.client_rebuilt", region=region)
        self._clients[region] = (built_with, client)
        return client

    async def _call(self, region: str, operation: str, **kwargs: Any) -> dict[str, Any]:
        method = getattr(self._client(region), operation)
        try:
            return await asyncio.to_thread(method, **kwargs)
        except ClientError as exc:
            error = exc.response.get("Error", {})
            code = str(error.get("Code", ""))
            request_id = exc.response.get("ResponseMetadata", {}).get("RequestId", "")
            key = kwargs.get("Key", kwargs.get("Bucket", ""))
            if code in _NOT_FOUND_CODES:
                raise NotFoundError(
                    f"{key} not found", code=code, request_id=request_id,
                    action=operation, original=exc,
                ) from exc
            raise RemoteServiceError(
                error.get("Message", "") or str(exc),
                code=code,
                request_id=request_id,
                action=operation,
                original=exc,
            ) from exc
        except BotoCoreError as exc:
            log.warning("object_store.transport_failed", operation=operation, error=type(exc).__name__)
            raise TransportError(
                str(exc), code=type(exc).__name__, action=operation, original=exc
            ) from exc

    async def put_object(self, bucket: str, region: str, key: str, body: bytes) -> None:
        await self._call(region, "put_object", Bucket=bucket, Key=key, Body=body)

    async def upload_file(self, bucket: str, region: str, key: str, file_path: str) -> None:
        # managed transfer switches to multipart for large files
        client = self._client(region)
        try:
            await asyncio.to_thread(client.upload_file, file_path, bucket, key)
        except (ClientError, BotoCoreError) as exc:
            raise TransportError(
                str(exc), code=type(exc).__name__, action="upload_file", original=exc
            ) from exc

    async def head_object(self, bucket: str, region: str, key: str) -> dict[str, Any]:
        res = await self._call(region, "head_object", Bucket=bucket, Key=key)
        last_modified = res.get("LastModified")
        return {
            "content_length": int(res.get("ContentLength", 0)),
            "content_type": res.get("ContentType", ""),
            "last_modified": last_modified.isoformat() if last_modified else "",
            "etag": res.get("ETag", ""),
        }

    async def list_objects(
        self,
        bucket: str,
        region: str,
        *,
        prefix: str = "",
        marker: str = "",
        max_keys: int = 100,
    ) -> dict[str, Any]:
        res = await self._call(
            region, "list_objects",
            Bucket=bucket, Prefix=prefix, Marker=marker, MaxKeys=max_keys,
        )
        contents = [
            {
                "Key": item["Key"],
                "Size": item.get("Size", 0),
                "ETag": item.get("ETag", ""),
                "LastModified": str(item.get("LastModified", "")),
            }
            for item in res.get("Contents", [])
        ]
        truncated = bool(res.get("IsTruncated"))
        # NextMarker is only returned with a delimiter; fall back to the last key
        next_marker = res.get("NextMarker") or (contents[-1]["Key"] if contents else "")
        return {
            "Contents": contents,
            "IsTruncated": truncated,
            "NextMarker": next_marker if truncated else "",
        }

    async def delete_object(self, bucket: str, region: str, key: str) -> None:
        await self._call(region, "delete_object", Bucket=bucket, Key=key)

    async def delete_objects(
        self, bucket: str, region: str, keys: list[str]
    ) -> dict[str, list[dict[str, Any]]]:
        res = await self._call(
            region, "delete_objects",
            Bucket=bucket,
            Delete={"Objects": [{"Key": k} for k in keys], "Quiet": False},
        )
        return {"Deleted": res.get("Deleted", []), "Error": res.get("Errors", [])}

    async def get_bucket_cors(self, bucket: str, region: str) -> list[dict[str, Any]]:
        try:
            res = await self._call(region, "get_bucket_cors", Bucket=bucket)
        except RemoteServiceError as exc:
            if exc.code in _NO_CONFIG_CODES:
                return []
            raise
        return res.get("CORSRules", [])

    async def put_bucket_cors(
        self, bucket: str, region: str, rules: list[dict[str, Any]]
    ) -> None:
        await self._call(
            region, "put_bucket_cors",
            Bucket=bucket, CORSConfiguration={"CORSRules": rules},
        )

    async def get_bucket_website(self, bucket: str, region: str) -> dict[str, Any]:
        try:
            res = await self._call(region, "get_bucket_website", Bucket=bucket)
        except RemoteServiceError as exc:
            if exc.code in _NO_CONFIG_CODES:
                return {}
            raise
        res.pop("ResponseMetadata", None)
        return res

    async def put_bucket_website(
        self, bucket: str, region: str, configuration: dict[str, Any]
    ) -> None:
        await self._call(
            region, "put_bucket_website",
            Bucket=bucket, WebsiteConfiguration=configuration,
        )


# ── In-memory store (tests, dry runs) ─────────────────────────────────────────

class MemoryObjectStore:
    """
    Dict-backed store with the same semantics as CosObjectStore.
    ``calls`` records every operation as ``(name, bucket, detail)``;
    keys in ``fail_deletes`` are reported in ``Error`` by delete_objects.
    """

    def __init__(self) -> None:
        self.objects: dict[tuple[str, str], bytes] = {}
        self.cors: dict[str, list[dict[str, Any]]] = {}
        self.websites: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple[str, str, Any]] = []
        self.fail_deletes: set[str] = set()

    def keys(self, bucket: str) -> list[str]:
        return sorted(k for b, k in self.objects if b == bucket)

    async def put_object(self, bucket: str, region: str, key: str, body: bytes) -> None:
        self.calls.append(("put_object", bucket, key))
        self.objects[(bucket, key)] = bytes(body)

    async def upload_file(self, bucket: str, region: str, key: str, file_path: str) -> None:
        self.calls.append(("upload_file", bucket, key))
        self.objects[(bucket, key)] = await asyncio.to_thread(Path(file_path).read_bytes)

    async def head_object(self, bucket: str, region: str, key: str) -> dict[str, Any]:
        self.calls.append(("head_object", bucket, key))
        if (bucket, key) not in self.objects:
            raise NotFoundError(f"{key} not found", code="404", action="head_object")
        return {
            "content_length": len(self.objects[(bucket, key)]),
            "content_type": "application/octet-stream",
            "last_modified": "",
            "etag": "",
        }

    async def list_objects(
        self,
        bucket: str,
        region: str,
        *,
        prefix: str = "",
        marker: str = "",
        max_keys: int = 100,
    ) -> dict[str, Any]:
        self.calls.append(("list_objects", bucket, (prefix, marker)))
        matching = [k for k in self.keys(bucket) if k.startswith(prefix) and k > marker]
        page = matching[:max_keys]
        truncated = len(matching) > max_keys
        return {
            "Contents": [
                {"Key": k, "Size": len(self.objects[(bucket, k)]), "ETag": "", "LastModified": ""}
                for k in page
            ],
            "IsTruncated": truncated,
            "NextMarker": page[-1] if truncated else "",
        }

    async def delete_object(self, bucket: str, region: str, key: str) -> None:
        self.calls.append(("delete_object", bucket, key))
        self.objects.pop((bucket, key), None)

    async def delete_objects(
        self, bucket: str, region: str, keys: list[str]
    ) -> dict[str, list[dict[str, Any]]]:
        self.calls.append(("delete_objects", bucket, list(keys)))
        deleted: list[dict[str, Any]] = []
        errors: list[dict[str, Any]] = []
        for key in keys:
            if key in self.fail_deletes:
                errors.append({"Key": key, "Code": "AccessDenied", "Message": "Access Denied"})
                continue
            self.objects.pop((bucket, key), None)
            deleted.append({"Key": key})
        return {"Deleted": deleted, "Error": errors}

    async def get_bucket_cors(self, bucket: str, region: str) -> list[dict[str, Any]]:
        self.calls.append(("get_bucket_cors", bucket, None))
        return [dict(rule) for rule in self.cors.get(bucket, [])]

    async def put_bucket_cors(
        self, bucket: str, region: str, rules: list[dict[str, Any]]
    ) -> None:
        self.calls.append(("put_bucket_cors", bucket, rules))
        self.cors[bucket] = [dict(rule) for rule in rules]

    async def get_bucket_website(self, bucket: str, region: str) -> dict[str, Any]:
        self.calls.append(("get_bucket_website", bucket, None))
        return dict(self.websites.get(bucket, {}))

    async def put_bucket_website(
        self, bucket: str, region: str, configuration: dict[str, Any]
    ) -> None:
        self.calls.append(("put_bucket_website", bucket, configuration))
        self.websites[bucket] = dict(configuration)


__all__ = ["ObjectStore", "CosObjectStore", "MemoryObjectStore", "cos_endpoint"]
