"""Tests for tier3_platform: provisioning saga, environment, manager."""
from __future__ import annotations

import asyncio
from typing import Any

import pytest

from cloudbase_manager.tier0_core.errors import (
    ConfigurationError,
    NotFoundError,
    RemoteServiceError,
    SagaCompensationError,
    TransportError,
    ValidationError,
)
from cloudbase_manager.tier2_services.cam import ROLE_NOT_EXIST, TCB_ROLE_NAME, TCB_ROLE_POLICY_ID
from cloudbase_manager.tier3_platform.manager import CloudBase, EnvironmentManager, create_manager
from cloudbase_manager.tier3_platform.provisioning import PAY_FAILED_MESSAGE, ProvisioningSaga

from fakes import BUCKET, ENV_ID


# ── Recording fakes ────────────────────────────────────────────────────────

class Recorder:
    """Shared call log; a step fails when its name is in ``failures``."""

    def __init__(self, failures: dict[str, BaseException] | None = None) -> None:
        self.calls: list[tuple[str, tuple]] = []
        self.failures = failures or {}

    def record(self, name: str, *args: Any) -> None:
        self.calls.append((name, args))
        if name in self.failures:
            raise self.failures[name]

    def names(self) -> list[str]:
        return [name for name, _ in self.calls]

    def count(self, name: str) -> int:
        return self.names().count(name)


class FakeTcb:
    def __init__(self, rec: Recorder, initialized: bool = True) -> None:
        self.rec = rec
        self.initialized = initialized

    async def check_tcb_service(self) -> dict[str, Any]:
        self.rec.record("CheckTcbService")
        return {"Initialized": self.initialized}

    async def init_tcb(self, channel=None, source=None) -> dict[str, Any]:
        self.rec.record("InitTcb", channel, source)
        return {}

    async def create_env_instance(self, alias, env_id, channel=None) -> dict[str, Any]:
        self.rec.record("CreateEnv", alias, env_id, channel)
        return {"EnvId": env_id}

    async def create_postpay_package(self, env_id, source="qcloud") -> dict[str, Any]:
        self.rec.record("CreatePostpayPackage", env_id, source)
        return {}

    async def destroy_env(self, env_id) -> dict[str, Any]:
        self.rec.record("DestroyEnv", env_id)
        return {}


class FakeCam:
    def __init__(self, rec: Recorder) -> None:
        self.rec = rec

    async def get_role(self, role_name) -> dict[str, Any]:
        self.rec.record("GetRole", role_name)
        return {"RoleInfo": {"RoleName": role_name}}

    async def create_role(self, role_name, policy_document, description) -> dict[str, Any]:
        self.rec.record("CreateRole", role_name)
        return {}

    async def attach_role_policy(self, policy_id, role_name) -> dict[str, Any]:
        self.rec.record("AttachRolePolicy", policy_id, role_name)
        return {}


class FakeBilling:
    def __init__(self, rec: Recorder, paid_ids: list[str] | None = None) -> None:
        self.rec = rec
        self.paid_ids = paid_ids

    async def generate_deals(self, goods) -> dict[str, Any]:
        self.rec.record("GenerateDeals", goods)
        return {"OrderIds": ["order-1"]}

    async def pay_deals(self, order_ids) -> dict[str, Any]:
        self.rec.record("PayDeals", order_ids)
        return {"OrderIds": self.paid_ids if self.paid_ids is not None else list(order_ids)}


def _saga(rec: Recorder, *, initialized: bool = True, paid_ids=None) -> ProvisioningSaga:
    return ProvisioningSaga(
        tcb=FakeTcb(rec, initialized),
        cam=FakeCam(rec),
        billing=FakeBilling(rec, paid_ids),
    )


def _remote(code: str) -> RemoteServiceError:
    return RemoteServiceError("failed", code=code, request_id="req-x")


# ── Provisioning saga ──────────────────────────────────────────────────────

class TestProvisioningSaga:
    @pytest.mark.asyncio
    async def test_initialized_platform_skips_role_setup(self):
        rec = Recorder()
        env_id = await _saga(rec).run("demo")

        assert env_id.startswith("demo-")
        assert rec.names() == ["CheckTcbService", "CreateEnv", "CreatePostpayPackage"]

    @pytest.mark.asyncio
    async def test_existing_role_is_not_recreated(self):
        rec = Recorder()
        await _saga(rec, initialized=False).run("demo")

        assert rec.names() == [
            "CheckTcbService", "GetRole", "InitTcb", "CreateEnv", "CreatePostpayPackage",
        ]

    @pytest.mark.asyncio
    async def test_missing_role_is_created_and_attached(self):
        rec = Recorder({"GetRole": _remote(ROLE_NOT_EXIST)})
        saga = _saga(rec, initialized=False)
        await saga.run("demo")

        assert rec.names()[:5] == [
            "CheckTcbService", "GetRole", "CreateRole", "AttachRolePolicy", "InitTcb",
        ]
        assert ("AttachRolePolicy", (TCB_ROLE_POLICY_ID, TCB_ROLE_NAME)) in rec.calls
        assert saga.state.role_created is True

    @pytest.mark.asyncio
    async def test_other_role_errors_propagate(self):
        rec = Recorder({"GetRole": _remote("AuthFailure")})
        with pytest.raises(RemoteServiceError) as info:
            await _saga(rec, initialized=False).run("demo")
        assert info.value.code == "AuthFailure"
        assert "CreateEnv" not in rec.names()

    @pytest.mark.asyncio
    async def test_postpay_failure_destroys_env_once(self):
        rec = Recorder({"CreatePostpayPackage": _remote("X")})
        saga = _saga(rec)

        with pytest.raises(RemoteServiceError) as info:
            await saga.run("demo", payment_mode="postpay")

        assert info.value.code == "X"
        assert rec.count("CreateEnv") == 1
        assert rec.count("DestroyEnv") == 1
        assert rec.calls[-1] == ("DestroyEnv", (saga.state.env_id,))
        assert not {"GetRole", "CreateRole", "GenerateDeals", "PayDeals"} & set(rec.names())

    @pytest.mark.asyncio
    async def test_order_generation_failure_destroys_env(self):
        rec = Recorder({"GenerateDeals": _remote("InvalidParameter.Goods")})
        saga = _saga(rec)

        with pytest.raises(RemoteServiceError, match="failed"):
            await saga.run("demo", payment_mode="prepay")

        assert rec.count("DestroyEnv") == 1
        assert rec.names()[-1] == "DestroyEnv"
        assert "PayDeals" not in rec.names()
        assert saga.state.rolled_back is True

    @pytest.mark.asyncio
    async def test_payment_failure_keeps_env(self):
        rec = Recorder({"PayDeals": _remote("FailedOperation.Balance")})
        saga = _saga(rec)

        with pytest.raises(SagaCompensationError) as info:
            await saga.run("demo", payment_mode="prepay")

        assert str(info.value) == PAY_FAILED_MESSAGE
        assert info.value.code == "FailedOperation.Balance"
        assert info.value.env_id == saga.state.env_id
        assert "DestroyEnv" not in rec.names()

    @pytest.mark.asyncio
    async def test_paid_order_mismatch_keeps_env(self):
        rec = Recorder()
        with pytest.raises(SagaCompensationError):
            await _saga(rec, paid_ids=["order-other"]).run("demo", payment_mode="prepay")
        assert "DestroyEnv" not in rec.names()

    @pytest.mark.asyncio
    async def test_prepay_success(self):
        rec = Recorder()
        saga = _saga(rec)
        await saga.run("demo", payment_mode="prepay")

        assert rec.names()[-2:] == ["GenerateDeals", "PayDeals"]
        assert ("PayDeals", (["order-1"],)) in rec.calls
        assert saga.state.order_paid is True

    @pytest.mark.asyncio
    async def test_failed_rollback_keeps_original_error(self):
        rec = Recorder({
            "CreatePostpayPackage": _remote("Original"),
            "DestroyEnv": TransportError("down"),
        })
        with pytest.raises(RemoteServiceError) as info:
            await _saga(rec).run("demo")
        assert info.value.code == "Original"
        assert rec.count("DestroyEnv") == 1

    @pytest.mark.asyncio
    async def test_failure_before_env_allocation_has_no_rollback(self):
        rec = Recorder({"CreateEnv": _remote("LimitExceeded")})
        with pytest.raises(RemoteServiceError):
            await _saga(rec).run("demo")
        assert "DestroyEnv" not in rec.names()

    @pytest.mark.asyncio
    async def test_rejects_bad_arguments(self):
        rec = Recorder()
        with pytest.raises(ValidationError):
            await _saga(rec).run("")
        with pytest.raises(ValidationError):
            await _saga(rec).run("demo", payment_mode="monthly")
        assert rec.calls == []


class TestCreateEnvEndToEnd:
    @pytest.mark.asyncio
    async def test_postpay_failure_over_the_wire(self, manager, cloud):
        cloud.on("CheckTcbService", {"Initialized": True, "RequestId": "r"})
        cloud.on("CreateEnv", lambda params: {"EnvId": params["EnvId"], "RequestId": "r"})
        cloud.fail("CreatePostpayPackage", "ResourceInsufficient.Package")

        with pytest.raises(RemoteServiceError) as info:
            await manager.env.create_env("demo", payment_mode="postpay")

        assert info.value.code == "ResourceInsufficient.Package"
        assert cloud.actions() == [
            "CheckTcbService", "CreateEnv", "CreatePostpayPackage", "DestroyEnv",
        ]
        assert cloud.actions("cam") == []
        assert cloud.actions("billing") == []
        allocated = cloud.params("CreateEnv")["EnvId"]
        assert cloud.params("DestroyEnv") == {"EnvId": allocated}
        assert cloud.params("CreateEnv")["Alias"] == "demo"
        assert cloud.params("CreateEnv")["Source"] == "qcloud"


# ── Environment ────────────────────────────────────────────────────────────

class TestEnvironment:
    @pytest.mark.asyncio
    async def test_config_loaded_once(self, environment, cloud):
        await asyncio.gather(environment.ensure_ready(), environment.ensure_ready())
        await environment.ensure_ready()
        assert cloud.actions().count("DescribeEnvs") == 1
        assert cloud.params("DescribeEnvs") == {"EnvId": ENV_ID}

    @pytest.mark.asyncio
    async def test_missing_environment(self, environment, cloud):
        cloud.on("DescribeEnvs", {"EnvList": [], "RequestId": "r"})
        with pytest.raises(NotFoundError, match=f"Environment {ENV_ID} not found"):
            await environment.ensure_ready()

    @pytest.mark.asyncio
    async def test_storage_location(self, environment):
        assert await environment.storage_location() == (BUCKET, "ap-shanghai")

    @pytest.mark.asyncio
    async def test_cos_region_override(self, environment, monkeypatch):
        from cloudbase_manager.tier0_core.config import _reset_config

        monkeypatch.setenv("TCB_COS_REGION", "ap-guangzhou")
        _reset_config()
        assert await environment.storage_location() == (BUCKET, "ap-guangzhou")

    def test_auth_config_uses_explicit_keys(self, environment):
        auth = environment.get_auth_config()
        assert auth["env_id"] == ENV_ID
        assert auth["secret_id"] == "AKIDtest"
        assert auth["secret_key"] == "test-secret-key"

    def test_services_are_cached(self, environment):
        assert environment.functions is environment.functions
        assert environment.storage is environment.storage


# ── Manager ────────────────────────────────────────────────────────────────

class TestManager:
    def test_pair_enforced(self):
        with pytest.raises(ConfigurationError, match="must be a pair"):
            CloudBase(secret_id="AKID")

    def test_default_environment_is_current(self):
        manager = create_manager(env_id="a-000001")
        assert manager.current_environment().env_id == "a-000001"

    def test_empty_env_id_allowed(self):
        assert CloudBase().current_environment().env_id == ""

    def test_switch_env(self):
        manager = create_manager(env_id="a-000001")
        manager.add_environment("b-000002")
        assert manager.current_environment().env_id == "a-000001"

        assert manager.switch_env("b-000002") is True
        assert manager.current_environment().env_id == "b-000002"
        assert manager.functions.environment.env_id == "b-000002"
        assert manager.switch_env("missing") is False

    def test_factory_returns_independent_managers(self):
        assert create_manager(env_id="a-000001") is not create_manager(env_id="a-000001")

    def test_common_service_uses_current_env(self, manager):
        assert manager.common_service("scf").environment is manager.current_environment()


class TestEnvironmentManager:
    def test_add_is_idempotent(self):
        from cloudbase_manager.tier0_core.credentials import CloudBaseContext

        envs = EnvironmentManager(CloudBaseContext())
        first = envs.add("a-000001")
        assert envs.add("a-000001") is first
        assert envs.get("a-000001") is first

    def test_remove_and_get(self):
        from cloudbase_manager.tier0_core.credentials import CloudBaseContext

        envs = EnvironmentManager(CloudBaseContext())
        envs.add("a-000001")
        envs.remove("a-000001")
        assert envs.get("a-000001") is None
        assert "a-000001" not in envs

    def test_no_current_env(self):
        from cloudbase_manager.tier0_core.credentials import CloudBaseContext

        with pytest.raises(ConfigurationError, match="current environment is null"):
            EnvironmentManager(CloudBaseContext()).get_current_env()
