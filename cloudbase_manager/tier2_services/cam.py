"""
cloudbase_manager.tier2_services.cam
─────────────────────────────────────
Access-management (CAM) role operations used while provisioning: look up the
platform service role, create it, attach its policy.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Any

from cloudbase_manager.tier1_runtime.cloud_api import CAM_VERSION

if TYPE_CHECKING:
    from cloudbase_manager.tier3_platform.environment import Environment

# Service role assumed by functions and the platform itself
TCB_ROLE_NAME = "TCB_QcsRole"
TCB_ROLE_POLICY_ID = 8825032
TCB_ROLE_DESCRIPTION = (
    "云开发(TCB)操作权限含在访问管理(CAM)创建角色，新增角色载体，给角色绑定策略；"
    "含读写对象存储(COS)数据；含读写无服务器云函数(SCF)数据；含读取云监控(Monitor)数据。"
)
TCB_ROLE_POLICY_DOCUMENT = (
    '{"version":"2.0","statement":[{"action":"sts:AssumeRole","effect":"allow",'
    '"principal":{"service":["scf.qcloud.com","tcb.cloud.tencent.com"]}}]}'
)

# GetRole error code meaning "no such role"; every other code is a real failure
ROLE_NOT_EXIST = "InvalidParameter.RoleNotExist"


class CamService:
    def __init__(self, environment: "Environment") -> None:
        self._cam = environment.cloud_service("cam", CAM_VERSION)

    async def describe_role_list(self, page: int, rp: int) -> dict[str, Any]:
        return await self._cam.request("DescribeRoleList", {"Page": page, "Rp": rp})

    async def get_role(self, role_name: str) -> dict[str, Any]:
        return await self._cam.request("GetRole", {"RoleName": role_name})

    async def create_role(
        self, role_name: str, policy_document: str, description: str
    ) -> dict[str, Any]:
        return await self._cam.request(
            "CreateRole",
            {
                "RoleName": role_name,
                "PolicyDocument": policy_document,
                "Description": description,
            },
        )

    async def attach_role_policy(self, policy_id: int, role_name: str) -> dict[str, Any]:
        return await self._cam.request(
            "AttachRolePolicy", {"PolicyId": policy_id, "AttachRoleName": role_name}
        )

    async def delete_role(self, role_name: str) -> dict[str, Any]:
        return await self._cam.request("DeleteRole", {"RoleName": role_name})


__all__ = [
    "CamService",
    "TCB_ROLE_NAME",
    "TCB_ROLE_POLICY_ID",
    "TCB_ROLE_DESCRIPTION",
    "TCB_ROLE_POLICY_DOCUMENT",
    "ROLE_NOT_EXIST",
]
