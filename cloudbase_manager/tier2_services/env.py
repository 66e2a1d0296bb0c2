"""
cloudbase_manager.tier2_services.env
─────────────────────────────────────
Environment (TCB) operations: listing and creating environments, security
domains, login providers, and the individual platform calls the
provisioning saga is built from.

Security-domain changes are mirrored into the storage bucket's CORS rules
so browsers on the new domain can reach stored files.
"""
from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from cloudbase_manager.tier0_core.crypto import rsa_encrypt
from cloudbase_manager.tier0_core.errors import ValidationError
from cloudbase_manager.tier0_core.logging import get_logger
from cloudbase_manager.tier1_runtime.cloud_api import TCB_VERSION

if TYPE_CHECKING:
    from cloudbase_manager.tier3_platform.environment import Environment

log = get_logger(__name__)

SOURCE_QCLOUD = "qcloud"
DEFAULT_CHANNEL = "qc_console"

PAYMENT_MODES = ("prepay", "postpay")
LOGIN_PLATFORMS = ("WECHAT-OPEN", "WECHAT-PUBLIC", "QQ", "ANONYMOUS")
LOGIN_STATUSES = ("ENABLE", "DISABLE")
ANONYMOUS_SECRET = "anonymous"


def _cors_rule(domain: str) -> dict[str, Any]:
    return {
        "AllowedOrigins": [f"http://{domain}", f"https://{domain}"],
        "AllowedMethods": ["GET", "POST", "PUT", "DELETE", "HEAD"],
        "AllowedHeaders": ["*"],
        "ExposeHeaders": ["Etag", "Date"],
        "MaxAgeSeconds": 5,
    }


def _is_domain_rule(rule: dict[str, Any], domain: str) -> bool:
    return rule.get("AllowedOrigins") == [f"http://{domain}", f"https://{domain}"]


class EnvService:
    def __init__(self, environment: "Environment") -> None:
        self.environment = environment
        self._tcb = environment.cloud_service("tcb", TCB_VERSION)

    @property
    def env_id(self) -> str:
        return self.environment.env_id

    # ── Environments ──────────────────────────────────────────────────────────

    async def list_envs(self) -> dict[str, Any]:
        return await self._tcb.request("DescribeEnvs")

    async def create_env(
        self,
        name: str,
        payment_mode: str = "postpay",
        channel: str = DEFAULT_CHANNEL,
    ) -> str:
        """
        Provision a new environment end to end and return its id.
        See tier3_platform.provisioning for the step order and rollback rules.
        """
        from cloudbase_manager.tier3_platform.provisioning import ProvisioningSaga

        saga = ProvisioningSaga(
            tcb=self,
            cam=self.environment.cam,
            billing=self.environment.billing,
        )
        return await saga.run(name, payment_mode=payment_mode, channel=channel)

    async def create_env_instance(
        self, alias: str, env_id: str, channel: str | None = DEFAULT_CHANNEL
    ) -> dict[str, Any]:
        params: dict[str, Any] = {"Alias": alias, "EnvId": env_id, "Source": SOURCE_QCLOUD}
        if channel:
            params["Channel"] = channel
        return await self._tcb.request("CreateEnv", params)

    async def check_tcb_service(self) -> dict[str, Any]:
        return await self._tcb.request("CheckTcbService", {})

    async def init_tcb(
        self, channel: str | None = None, source: str | None = None
    ) -> dict[str, Any]:
        return await self._tcb.request("InitTcb", {"Channel": channel, "Source": source})

    async def create_postpay_package(
        self, env_id: str, source: str = SOURCE_QCLOUD
    ) -> dict[str, Any]:
        return await self._tcb.request(
            "CreatePostpayPackage", {"EnvId": env_id, "Source": source or SOURCE_QCLOUD}
        )

    async def destroy_env(self, env_id: str) -> dict[str, Any]:
        return await self._tcb.request("DestroyEnv", {"EnvId": env_id})

    async def get_env_info(self) -> dict[str, Any]:
        res = await self._tcb.request("DescribeEnvs", {"EnvId": self.env_id})
        env_list = res.get("EnvList") or []
        return {
            "EnvInfo": env_list[0] if env_list else {},
            "RequestId": res.get("RequestId", ""),
        }

    async def update_env_info(self, alias: str) -> dict[str, Any]:
        return await self._tcb.request("ModifyEnv", {"EnvId": self.env_id, "Alias": alias})

    # ── Security domains ──────────────────────────────────────────────────────

    async def get_env_auth_domains(self) -> dict[str, Any]:
        return await self._tcb.request("DescribeAuthDomains", {"EnvId": self.env_id})

    async def create_env_domain(self, domains: list[str]) -> dict[str, Any]:
        await self.environment.ensure_ready()
        res = await self._tcb.request(
            "CreateAuthDomain", {"EnvId": self.env_id, "Domains": domains}
        )
        await self._sync_cors(domains, deleted=False)
        return res

    async def delete_env_domain(self, domains: list[str]) -> dict[str, Any]:
        await self.environment.ensure_ready()
        current = await self.get_env_auth_domains()
        domain_ids = [
            item["Id"] for item in current.get("Domains") or [] if item.get("Domain") in domains
        ]
        res = await self._tcb.request(
            "DeleteAuthDomain", {"EnvId": self.env_id, "DomainIds": domain_ids}
        )
        await self._sync_cors(domains, deleted=True)
        return res

    async def _sync_cors(self, domains: list[str], *, deleted: bool) -> None:
        bucket, region = await self.environment.storage_location()
        store = self.environment.object_store
        rules = await store.get_bucket_cors(bucket, region)
        rules = [r for r in rules if not any(_is_domain_rule(r, d) for d in domains)]
        if not deleted:
            rules.extend(_cors_rule(d) for d in domains)
        await store.put_bucket_cors(bucket, region, rules)
        log.debug("env.cors_synced", env_id=self.env_id, domains=domains, deleted=deleted)

    # ── Login providers ───────────────────────────────────────────────────────

    async def get_login_config_list(self) -> dict[str, Any]:
        return await self._tcb.request("DescribeLoginConfigs", {"EnvId": self.env_id})

    async def create_login_config(
        self, platform: str, app_id: str, app_secret: str | None = None
    ) -> dict[str, Any]:
        if platform not in LOGIN_PLATFORMS:
            raise ValidationError(
                f"Invalid platform value: {platform}. "
                f"Now only support {', '.join(repr(p) for p in LOGIN_PLATFORMS)}",
                fields={"platform": platform},
            )
        if platform == "ANONYMOUS":
            app_secret = ANONYMOUS_SECRET
        secret = await asyncio.to_thread(rsa_encrypt, app_secret or "")
        return await self._tcb.request(
            "CreateLoginConfig",
            {
                "EnvId": self.env_id,
                "Platform": platform,
                "PlatformId": app_id,
                "PlatformSecret": secret,
                "Status": "ENABLE",
            },
        )

    async def update_login_config(
        self,
        config_id: str,
        status: str = "ENABLE",
        app_id: str = "",
        app_secret: str = "",
    ) -> dict[str, Any]:
        if status not in LOGIN_STATUSES:
            raise ValidationError(
                f"Invalid status value: {status}. Only support 'ENABLE', 'DISABLE'",
                fields={"status": status},
            )
        params: dict[str, Any] = {"EnvId": self.env_id, "ConfigId": config_id, "Status": status}
        if app_id == ANONYMOUS_SECRET:
            app_secret = ANONYMOUS_SECRET
        if app_id:
            params["PlatformId"] = app_id
        if app_secret:
            params["PlatformSecret"] = await asyncio.to_thread(rsa_encrypt, app_secret)
        return await self._tcb.request("UpdateLoginConfig", params)

    async def create_custom_login_keys(self) -> dict[str, Any]:
        return await self._tcb.request("CreateCustomLoginKeys", {"EnvId": self.env_id})


__all__ = ["EnvService", "PAYMENT_MODES", "LOGIN_PLATFORMS", "DEFAULT_CHANNEL"]
