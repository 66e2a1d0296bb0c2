"""
cloudbase_manager.tier1_runtime.cloud_api
──────────────────────────────────────────
Signed request client for one ``(service, version)`` pair. Every call
resolves credentials, strips null parameters, signs with TC3-HMAC-SHA256,
dispatches a single HTTP request and unwraps the ``Response`` envelope.

A remote ``Response.Error`` becomes RemoteServiceError carrying the remote
code and request id. Transport and body-parse failures are re-raised with
the action attached. Nothing is retried here; callers that need retries
wrap the call in tier1_runtime.retry.

Backed by: httpx (via tier0_core.http)

Usage:
    tcb = CloudService(context, "tcb", "2018-06-08")
    res = await tcb.request("DescribeEnvs", {"EnvId": "demo-a1b2c3"})
    res["EnvList"]
"""
from __future__ import annotations

from typing import Any
from urllib.parse import urlencode, urlparse

import httpx

from cloudbase_manager.tier0_core.config import ManagerConfig, get_config
from cloudbase_manager.tier0_core.credentials import CloudBaseContext, resolve_credentials
from cloudbase_manager.tier0_core.errors import (
    CloudBaseError,
    RemoteServiceError,
    ResponseParseError,
    TransportError,
)
from cloudbase_manager.tier0_core.http import fetch_json
from cloudbase_manager.tier0_core.logging import get_logger
from cloudbase_manager.tier0_core.signing import (
    CONTENT_TYPE_FORM,
    CONTENT_TYPE_JSON,
    dump_payload,
    sign,
    strip_nulls,
)
from cloudbase_manager.tier1_runtime.clock import unix_seconds

log = get_logger(__name__)

# ── API versions ──────────────────────────────────────────────────────────────

TCB_VERSION = "2018-06-08"
SCF_VERSION = "2018-04-16"
VPC_VERSION = "2017-03-12"
CAM_VERSION = "2019-01-16"
BILLING_VERSION = "2018-07-09"
CDN_VERSION = "2018-06-06"
FLEXDB_VERSION = "2018-11-27"

DEFAULT_TCB_URL = "https://tcb.tencentcloudapi.com"
FLEXDB_URL = "https://flexdb.ap-shanghai.tencentcloudapi.com"


def base_url_for(service: str, config: ManagerConfig | None = None) -> str:
    """Endpoint for a service name. Unknown services follow the common pattern."""
    if service == "tcb":
        config = config or get_config()
        return config.tcb_base_url or DEFAULT_TCB_URL
    if service == "flexdb":
        return FLEXDB_URL
    return f"https://{service}.tencentcloudapi.com"


class CloudService:
    """
    Client for one remote service.

    ``base_params`` are merged over every request's params (they win on key
    collisions). ``transport`` is handed to httpx and exists for tests.
    """

    def __init__(
        self,
        context: CloudBaseContext | None,
        service: str,
        version: str,
        base_params: dict[str, Any] | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        config: ManagerConfig | None = None,
    ) -> None:
        self.context = context or CloudBaseContext()
        self.service = service
        self.version = version
        self.base_params = dict(base_params or {})
        self._transport = transport
        self._config = config

    @property
    def config(self) -> ManagerConfig:
        return self._config or get_config()

    @property
    def url(self) -> str:
        return base_url_for(self.service, self.config)

    async def request(
        self,
        action: str,
        params: dict[str, Any] | None = None,
        method: str = "POST",
    ) -> dict[str, Any]:
        """Send ``action`` and return the unwrapped ``Response`` object."""
        config = self.config
        credentials = resolve_credentials(self.context, self._config)
        method = method.upper()

        data = strip_nulls({**(params or {}), **self.base_params})

        url = self.url
        host = urlparse(url).hostname or ""
        timestamp = unix_seconds()

        if method == "GET":
            query = urlencode(sorted(data.items()), doseq=True)
            body: str | None = None
            content_type = CONTENT_TYPE_FORM
            url = f"{url}?{query}" if query else url
        else:
            query = ""
            body = dump_payload(data)
            content_type = CONTENT_TYPE_JSON

        authorization = sign(
            credentials.secret_id,
            credentials.secret_key.get_secret_value(),
            self.service,
            method,
            "/",
            query,
            body if method == "POST" else "",
            timestamp,
            host=host,
        )

        headers = {
            "Host": host,
            "X-TC-Action": action,
            "X-TC-Region": config.region,
            "X-TC-Timestamp": str(timestamp),
            "X-TC-Version": self.version,
            "Content-Type": content_type,
            "Authorization": authorization,
        }
        if credentials.session_token:
            headers["X-TC-Token"] = credentials.session_token.get_secret_value()

        log.debug("cloud_api.request", service=self.service, action=action, method=method)

        try:
            payload = await fetch_json(
                url,
                method=method,
                headers=headers,
                content=body.encode("utf-8") if body is not None else None,
                timeout=config.request_timeout,
                proxy=credentials.proxy or config.http_proxy,
                transport=self._transport,
            )
        except (TransportError, ResponseParseError) as exc:
            log.warning(
                "cloud_api.failed",
                service=self.service,
                action=action,
                error=type(exc).__name__,
            )
            raise type(exc)(
                exc.raw_message, code=exc.code, action=action, original=exc.original
            ) from exc

        return self._unwrap(action, payload)

    def _unwrap(self, action: str, payload: Any) -> dict[str, Any]:
        if not isinstance(payload, dict) or not isinstance(payload.get("Response"), dict):
            raise ResponseParseError(
                f"unexpected response shape: {str(payload)[:200]}", action=action
            )
        response = payload["Response"]
        error = response.get("Error")
        if error:
            request_id = response.get("RequestId", "")
            log.info(
                "cloud_api.remote_error",
                service=self.service,
                action=action,
                code=error.get("Code"),
                request_id=request_id,
            )
            raise RemoteServiceError(
                error.get("Message", ""),
                code=error.get("Code", ""),
                request_id=request_id,
                action=action,
            )
        return response


def error_code(exc: BaseException) -> str:
    """Remote code of a CloudBaseError, empty for anything else."""
    return exc.code if isinstance(exc, CloudBaseError) else ""


__all__ = [
    "CloudService",
    "base_url_for",
    "error_code",
    "TCB_VERSION",
    "SCF_VERSION",
    "VPC_VERSION",
    "CAM_VERSION",
    "BILLING_VERSION",
    "CDN_VERSION",
    "FLEXDB_VERSION",
]
