"""
cloudbase_manager.tier3_platform.provisioning
──────────────────────────────────────────────
Environment provisioning saga. Coordinates three remote services, each
step awaited in order:

  CheckTcbService ─ initialized ──────────────────────────────┐
        └ not initialized → GetRole TCB_QcsRole                │
              ├ exists ────────────────────────┐               │
              └ RoleNotExist → CreateRole      │               │
                               → AttachRolePolicy              │
                                               → InitTcb ──────┤
  CreateEnv <name>-<6 hex> ◄───────────────────────────────────┘
    prepay:  GenerateDeals → PayDeals
    postpay: CreatePostpayPackage

Compensation once the environment exists:
  - order generation or postpay purchase fails → DestroyEnv once, re-raise
    the original error
  - order payment fails → keep the environment (the order can be re-paid)
    and raise SagaCompensationError wrapping the original
A failing DestroyEnv is logged and never replaces the original error.

State lives only for one run; nothing is persisted.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from cloudbase_manager.tier0_core.errors import (
    CloudBaseError,
    SagaCompensationError,
    ValidationError,
)
from cloudbase_manager.tier0_core.ids import new_env_id
from cloudbase_manager.tier0_core.logging import get_logger, log_context
from cloudbase_manager.tier2_services.billing import basic_package_goods
from cloudbase_manager.tier2_services.cam import (
    ROLE_NOT_EXIST,
    TCB_ROLE_DESCRIPTION,
    TCB_ROLE_NAME,
    TCB_ROLE_POLICY_DOCUMENT,
    TCB_ROLE_POLICY_ID,
)
from cloudbase_manager.tier2_services.env import DEFAULT_CHANNEL, PAYMENT_MODES, SOURCE_QCLOUD

log = get_logger(__name__)

PAY_FAILED_MESSAGE = (
    "prepay order payment failed, re-pay it from the order console "
    "(https://console.cloud.tencent.com/deal)"
)


# ── Collaborators ─────────────────────────────────────────────────────────────

class TcbSteps(Protocol):
    async def check_tcb_service(self) -> dict[str, Any]: ...
    async def init_tcb(self, channel: str | None = None, source: str | None = None) -> dict[str, Any]: ...
    async def create_env_instance(self, alias: str, env_id: str, channel: str | None = ...) -> dict[str, Any]: ...
    async def create_postpay_package(self, env_id: str, source: str = ...) -> dict[str, Any]: ...
    async def destroy_env(self, env_id: str) -> dict[str, Any]: ...


class CamSteps(Protocol):
    async def get_role(self, role_name: str) -> dict[str, Any]: ...
    async def create_role(self, role_name: str, policy_document: str, description: str) -> dict[str, Any]: ...
    async def attach_role_policy(self, policy_id: int, role_name: str) -> dict[str, Any]: ...


class BillingSteps(Protocol):
    async def generate_deals(self, goods: list[dict[str, Any]]) -> dict[str, Any]: ...
    async def pay_deals(self, order_ids: list[str]) -> dict[str, Any]: ...


@dataclass
class ProvisioningState:
    """Progress flags for one saga run."""

    name: str
    payment_mode: str
    channel: str
    platform_initialized: bool = False
    role_existed: bool = False
    role_created: bool = False
    env_id: str = ""
    order_ids: list[str] = field(default_factory=list)
    order_generated: bool = False
    order_paid: bool = False
    postpay_purchased: bool = False
    rolled_back: bool = False


class ProvisioningSaga:
    def __init__(self, tcb: TcbSteps, cam: CamSteps, billing: BillingSteps) -> None:
        self.tcb = tcb
        self.cam = cam
        self.billing = billing
        self.state: ProvisioningState | None = None

    async def run(
        self,
        name: str,
        *,
        payment_mode: str | None = "postpay",
        channel: str | None = DEFAULT_CHANNEL,
    ) -> str:
        """Provision ``name`` and return the allocated env id."""
        payment_mode = payment_mode or "postpay"
        channel = channel or DEFAULT_CHANNEL
        if not name:
            raise ValidationError("environment name is required", fields={"name": name})
        if payment_mode not in PAYMENT_MODES:
            raise ValidationError(
                f"payment_mode must be one of {PAYMENT_MODES}, got {payment_mode!r}",
                fields={"payment_mode": payment_mode},
            )

        state = ProvisioningState(name=name, payment_mode=payment_mode, channel=channel)
        self.state = state

        with log_context(env_name=name, payment_mode=payment_mode):
            await self._ensure_platform(state)
            await self._create_env(state)

            if payment_mode == "prepay":
                await self._prepay(state)
            else:
                await self._postpay(state)

            log.info("provisioning.done", env_id=state.env_id)
        return state.env_id

    # ── Steps ─────────────────────────────────────────────────────────────────

    async def _ensure_platform(self, state: ProvisioningState) -> None:
        res = await self.tcb.check_tcb_service()
        state.platform_initialized = bool(res.get("Initialized"))
        if state.platform_initialized:
            return

        try:
            await self.cam.get_role(TCB_ROLE_NAME)
            state.role_existed = True
        except CloudBaseError as exc:
            if exc.code != ROLE_NOT_EXIST:
                raise

        if not state.role_existed:
            log.info("provisioning.role_create", role=TCB_ROLE_NAME)
            await self.cam.create_role(
                TCB_ROLE_NAME, TCB_ROLE_POLICY_DOCUMENT, TCB_ROLE_DESCRIPTION
            )
            await self.cam.attach_role_policy(TCB_ROLE_POLICY_ID, TCB_ROLE_NAME)
            state.role_created = True

        await self.tcb.init_tcb(channel=state.channel, source=SOURCE_QCLOUD)
        state.platform_initialized = True

    async def _create_env(self, state: ProvisioningState) -> None:
        requested = new_env_id(state.name)
        res = await self.tcb.create_env_instance(state.name, requested, state.channel)
        state.env_id = res.get("EnvId") or requested
        log.info("provisioning.env_created", env_id=state.env_id)

    async def _prepay(self, state: ProvisioningState) -> None:
        try:
            res = await self.billing.generate_deals(basic_package_goods(state.env_id))
            state.order_ids = list(res.get("OrderIds") or [])
            state.order_generated = True
        except Exception as exc:
            await self._rollback(state, exc)
            raise

        try:
            res = await self.billing.pay_deals(state.order_ids)
            paid = list(res.get("OrderIds") or [])
            if not paid or not state.order_ids or paid[0] != state.order_ids[0]:
                raise CloudBaseError("paid order id does not match the generated order")
            state.order_paid = True
        except Exception as exc:
            log.warning(
                "provisioning.pay_failed",
                env_id=state.env_id,
                order_ids=state.order_ids,
                error=type(exc).__name__,
            )
            raise SagaCompensationError(
                PAY_FAILED_MESSAGE, env_id=state.env_id, original=exc
            ) from exc

    async def _postpay(self, state: ProvisioningState) -> None:
        try:
            await self.tcb.create_postpay_package(state.env_id, SOURCE_QCLOUD)
            state.postpay_purchased = True
        except Exception as exc:
            await self._rollback(state, exc)
            raise

    async def _rollback(self, state: ProvisioningState, cause: BaseException) -> None:
        log.warning(
            "provisioning.rollback",
            env_id=state.env_id,
            cause=type(cause).__name__,
            code=getattr(cause, "code", None),
        )
        try:
            await self.tcb.destroy_env(state.env_id)
            state.rolled_back = True
        except Exception as exc:
            log.error(
                "provisioning.rollback_failed",
                env_id=state.env_id,
                error=type(exc).__name__,
                code=getattr(exc, "code", None),
            )


__all__ = ["ProvisioningSaga", "ProvisioningState", "PAY_FAILED_MESSAGE"]
