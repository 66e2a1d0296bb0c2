"""
cloudbase_manager.tier2_services.billing
─────────────────────────────────────────
Billing operations for prepaid environment packages: create an order for a
goods list, then pay the returned order ids.
"""
from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from cloudbase_manager.tier1_runtime.cloud_api import BILLING_VERSION

if TYPE_CHECKING:
    from cloudbase_manager.tier3_platform.environment import Environment

BASIC_PACKAGE_GOODS_CATEGORY = 101183
BASIC_PACKAGE_PID = 16677

_BASIC_PACKAGE_INFO = [
    {"name": "套餐版本", "value": "基础版 1"},
    {"name": "存储空间", "value": "5GB"},
    {"name": "CDN流量", "value": "5GB"},
    {"name": "云函数资源使用量", "value": "4万GBs"},
    {"name": "数据库容量", "value": "2GB"},
    {"name": "数据库同时连接数", "value": "20个"},
]


def basic_package_goods(env_id: str) -> list[dict[str, Any]]:
    """One month of the basic package for ``env_id``, auto-renewed."""
    detail = {
        "productCode": "p_tcb",
        "subProductCode": "sp_tcb_basic",
        "resourceId": env_id,
        "pid": BASIC_PACKAGE_PID,
        "timeUnit": "m",
        "timeSpan": 1,
        "tcb_cos": 1,
        "tcb_cdn": 1,
        "tcb_scf": 1,
        "tcb_mongodb": 1,
        "region": "ap-shanghai",
        "zone": "ap-shanghai-1",
        "source": "qcloud",
        "envId": env_id,
        "packageId": "basic",
        "isAutoRenew": "true",
        "tranType": 1,
        "productInfo": _BASIC_PACKAGE_INFO,
    }
    return [
        {
            "GoodsCategoryId": BASIC_PACKAGE_GOODS_CATEGORY,
            "RegionId": 1,
            "ZoneId": 0,
            "GoodsNum": 1,
            "ProjectId": 0,
            "PayMode": 1,
            "Platform": 1,
            "GoodsDetail": json.dumps(detail, separators=(",", ":"), ensure_ascii=False),
        }
    ]


class BillingService:
    def __init__(self, environment: "Environment") -> None:
        self._billing = environment.cloud_service("billing", BILLING_VERSION)

    async def generate_deals(self, goods: list[dict[str, Any]]) -> dict[str, Any]:
        return await self._billing.request("GenerateDeals", {"Goods": goods})

    async def pay_deals(self, order_ids: list[str]) -> dict[str, Any]:
        return await self._billing.request("PayDeals", {"OrderIds": order_ids})


__all__ = ["BillingService", "basic_package_goods"]
