"""
cloudbase_manager.tier2_services.function
──────────────────────────────────────────
Serverless function (SCF) operations for one environment: deploy, update,
invoke, logs, triggers and layers. Every call is scoped to the
environment's function namespace.

Deployment with ``force=True`` over an existing function becomes
"create triggers → update config → update code"; trigger creation and the
code update are retried (tier1_runtime.retry) because the function may
still be settling from the previous step.
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING, Any, Union

from pydantic import BaseModel, ConfigDict, Field

from cloudbase_manager.tier0_core.errors import CloudBaseError, ValidationError
from cloudbase_manager.tier0_core.logging import get_logger
from cloudbase_manager.tier1_runtime import clock
from cloudbase_manager.tier1_runtime.cloud_api import SCF_VERSION, VPC_VERSION
from cloudbase_manager.tier1_runtime.retry import call_with_retry
from cloudbase_manager.tier1_runtime.validate import validate_input
from cloudbase_manager.tier2_services.packer import (
    MAX_BASE64_LENGTH,
    NODE_MODULES_IGNORE,
    CodeType,
    FunctionPacker,
    read_zip_base64,
)

if TYPE_CHECKING:
    from cloudbase_manager.tier3_platform.environment import Environment

log = get_logger(__name__)

DEFAULT_HANDLER = "index.main"
DEFAULT_TIMEOUT = 10
DEFAULT_RUNTIME = "Nodejs8.9"
DEFAULT_MEMORY_SIZE = 256
FUNCTION_ROLE = "TCB_QcsRole"
FUNCTION_STAMP = "MINI_QCBASE"

STATUS_CREATING = "Creating"
STATUS_UPDATING = "Updating"
WAIT_INTERVAL_SECONDS = 1.0

FUNCTION_EXISTS_CODES = ("ResourceInUse.FunctionName", "ResourceInUse.Function")
SUPPORTED_TRIGGER_TYPES = ("timer",)


# ── Models ────────────────────────────────────────────────────────────────────

class _Model(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class FunctionVpc(_Model):
    vpc_id: str = Field(default="", alias="vpcId")
    subnet_id: str = Field(default="", alias="subnetId")


class FunctionTrigger(_Model):
    name: str
    type: str
    config: str


class LayerRef(_Model):
    layer_name: str = Field(alias="LayerName")
    layer_version: int = Field(alias="LayerVersion")


class CloudFunction(_Model):
    """Deployable function description. Accepts camelCase or snake_case keys."""

    name: str = Field(min_length=1)
    handler: str | None = None
    runtime: str | None = None
    timeout: int | None = None
    memory_size: int | None = Field(default=None, alias="memorySize")
    env_variables: dict[str, Union[str, int, float, bool]] = Field(
        default_factory=dict, alias="envVariables"
    )
    vpc: FunctionVpc | None = None
    install_dependency: bool | None = Field(default=None, alias="installDependency")
    l5: bool | None = None
    triggers: list[FunctionTrigger] = Field(default_factory=list)
    ignore: list[str] = Field(default_factory=list)
    is_wait_install: bool = Field(default=False, alias="isWaitInstall")
    layers: list[LayerRef] = Field(default_factory=list)


FunctionSpec = Union[CloudFunction, dict[str, Any]]


# ── Parameter mapping ─────────────────────────────────────────────────────────

def is_node_runtime(runtime: str | None) -> bool:
    return bool(runtime) and "Nodejs" in runtime


def _flag(value: bool) -> str:
    return "TRUE" if value else "FALSE"


def install_dependency_flag(func: CloudFunction) -> str:
    if func.install_dependency is not None:
        return _flag(func.install_dependency)
    return _flag(is_node_runtime(func.runtime))


def _environment_param(func: CloudFunction) -> dict[str, Any] | None:
    if not func.env_variables:
        return None
    # Environment replaces the remote variables wholesale
    return {"Variables": [{"Key": k, "Value": v} for k, v in func.env_variables.items()]}


def _vpc_param(func: CloudFunction) -> dict[str, str]:
    vpc = func.vpc or FunctionVpc()
    return {"SubnetId": vpc.subnet_id, "VpcId": vpc.vpc_id}


def _layers_param(func: CloudFunction) -> list[dict[str, Any]] | None:
    if not func.layers:
        return None
    return [layer.model_dump(by_alias=True) for layer in func.layers]


def config_to_params(
    func: CloudFunction,
    *,
    code_secret: str | None = None,
    base_params: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """CreateFunction parameters, defaults filled in. ``None`` values are stripped on send."""
    params: dict[str, Any] = {
        **(base_params or {}),
        "FunctionName": func.name,
        # unset leaves the remote L5 state untouched
        "L5Enable": None if func.l5 is None else _flag(func.l5),
        "Environment": _environment_param(func),
        "Handler": func.handler or DEFAULT_HANDLER,
        "Timeout": func.timeout or DEFAULT_TIMEOUT,
        "Runtime": func.runtime or DEFAULT_RUNTIME,
        "VpcConfig": _vpc_param(func),
        "MemorySize": func.memory_size or DEFAULT_MEMORY_SIZE,
        "InstallDependency": install_dependency_flag(func),
        "CodeSecret": code_secret or None,
        "Layers": _layers_param(func),
    }
    return params


def config_update_params(func: CloudFunction, namespace: str) -> dict[str, Any]:
    """UpdateFunctionConfiguration parameters; unset fields keep their remote value."""
    params: dict[str, Any] = {
        "FunctionName": func.name,
        "Namespace": namespace,
        "L5Enable": None if func.l5 is None else _flag(func.l5),
        "Environment": _environment_param(func),
        "Timeout": func.timeout or None,
        "Runtime": func.runtime or None,
        "VpcConfig": _vpc_param(func),
        "MemorySize": func.memory_size or None,
        "Layers": _layers_param(func),
    }
    if func.install_dependency is not None:
        params["InstallDependency"] = _flag(func.install_dependency)
    elif is_node_runtime(func.runtime):
        params["InstallDependency"] = "TRUE"
    return params


# ── Service ───────────────────────────────────────────────────────────────────

class FunctionService:
    def __init__(self, environment: "Environment") -> None:
        self.environment = environment
        self._scf = environment.cloud_service("scf", SCF_VERSION)
        self._vpc = environment.cloud_service("vpc", VPC_VERSION)

    async def _namespace(self) -> str:
        config = await self.environment.ensure_ready()
        functions = config.get("Functions") or []
        if not functions:
            raise CloudBaseError(
                f"environment {self.environment.env_id} has no function namespace",
                code="INVALID_OPERATION",
            )
        return functions[0]["Namespace"]

    async def _code_params(
        self,
        func: CloudFunction,
        install_dependency: str,
        *,
        function_root_path: str | None = None,
        function_path: str | None = None,
        base64_code: str | None = None,
    ) -> dict[str, str]:
        if base64_code:
            if len(base64_code) > MAX_BASE64_LENGTH:
                raise ValidationError("base64 code must not exceed 20MB")
            return {"ZipFile": base64_code}

        ignore = list(func.ignore)
        if install_dependency == "TRUE":
            # dependencies are installed remotely
            ignore = NODE_MODULES_IGNORE + ignore
        code_type = CodeType.JAVA_FILE if func.runtime == "Java8" else CodeType.FILE
        packer = FunctionPacker(
            root=function_root_path,
            name=func.name,
            ignore=ignore,
            function_path=function_path,
            code_type=code_type,
        )
        packed = await packer.build()
        if not packed.size:
            raise ValidationError("function code must not be empty")
        return {"ZipFile": packed.base64}

    # ── Deploy ────────────────────────────────────────────────────────────────

    async def create_function(
        self,
        func: FunctionSpec,
        *,
        function_root_path: str | None = None,
        function_path: str | None = None,
        base64_code: str | None = None,
        force: bool = False,
        code_secret: str | None = None,
    ) -> dict[str, Any]:
        """
        Create a function with its triggers. With ``force`` an existing
        function of the same name is overwritten and the result is
        ``{"triggerRes", "configRes", "codeRes"}``.
        """
        func = validate_input(CloudFunction, func)
        namespace = await self._namespace()
        params = config_to_params(
            func,
            code_secret=code_secret,
            base_params={"Namespace": namespace, "Role": FUNCTION_ROLE, "Stamp": FUNCTION_STAMP},
        )
        params["Code"] = await self._code_params(
            func,
            params["InstallDependency"],
            function_root_path=function_root_path,
            function_path=function_path,
            base64_code=base64_code,
        )

        try:
            res = await self._scf.request("CreateFunction", params)
            await self._retry_create_triggers(func)
            if func.is_wait_install:
                await self.wait_function_active(func.name, code_secret)
            return res
        except CloudBaseError as exc:
            if exc.code in FUNCTION_EXISTS_CODES and force:
                log.info("function.overwrite", function=func.name)
                trigger_res = await self._retry_create_triggers(func)
                config_res = await self.update_function_config(func)
                code_res = await call_with_retry(
                    lambda: self.update_function_code(
                        func,
                        function_root_path=function_root_path,
                        function_path=function_path,
                        base64_code=base64_code,
                        code_secret=code_secret,
                    )
                )
                return {"triggerRes": trigger_res, "configRes": config_res, "codeRes": code_res}
            if force:
                raise
            raise CloudBaseError(
                f"[{func.name}] deploy failed:\n{exc.message}",
                code=exc.code,
                request_id=exc.request_id,
                original=exc,
            ) from exc

    async def _retry_create_triggers(self, func: CloudFunction) -> dict[str, Any] | None:
        return await call_with_retry(
            lambda: self.create_function_triggers(func.name, func.triggers)
        )

    async def update_function_config(self, func: FunctionSpec) -> dict[str, Any]:
        func = validate_input(CloudFunction, func)
        namespace = await self._namespace()
        return await self._scf.request(
            "UpdateFunctionConfiguration", config_update_params(func, namespace)
        )

    async def update_function_code(
        self,
        func: FunctionSpec,
        *,
        function_root_path: str | None = None,
        function_path: str | None = None,
        base64_code: str | None = None,
        code_secret: str | None = None,
    ) -> dict[str, Any]:
        func = validate_input(CloudFunction, func)
        namespace = await self._namespace()
        install_dependency = install_dependency_flag(func)
        code = await self._code_params(
            func,
            install_dependency,
            function_root_path=function_root_path,
            function_path=function_path,
            base64_code=base64_code,
        )
        params = {
            "FunctionName": func.name,
            "Namespace": namespace,
            "Handler": func.handler or DEFAULT_HANDLER,
            "InstallDependency": install_dependency,
            "CodeSecret": code_secret or None,
            **code,
        }
        try:
            res = await self._scf.request("UpdateFunctionCode", params)
            if func.is_wait_install:
                await self.wait_function_active(func.name, code_secret)
            return res
        except CloudBaseError as exc:
            raise CloudBaseError(
                f"[{func.name}] function code update failed: {exc.message}",
                code=exc.code,
                request_id=exc.request_id,
                original=exc,
            ) from exc

    async def update_function_incremental_code(
        self,
        func: FunctionSpec,
        function_root_path: str,
        *,
        delete_files: list[str] | None = None,
        add_files: str | None = None,
    ) -> dict[str, Any]:
        func = validate_input(CloudFunction, func)
        namespace = await self._namespace()
        params: dict[str, Any] = {
            "FunctionName": func.name,
            "Namespace": namespace,
            "DeleteFiles": delete_files or None,
        }
        if add_files:
            code_type = CodeType.JAVA_FILE if func.runtime == "Java8" else CodeType.FILE
            packer = FunctionPacker(
                root=function_root_path,
                name=func.name,
                code_type=code_type,
                incremental_path=add_files,
            )
            packed = await packer.build()
            if not packed.size:
                raise ValidationError("incremental files must not be empty")
            params["AddFiles"] = packed.base64
        return await self._scf.request("UpdateFunctionIncrementalCode", params)

    # ── Queries ───────────────────────────────────────────────────────────────

    async def list_functions(self, limit: int = 20, offset: int = 0) -> list[dict[str, Any]]:
        namespace = await self._namespace()
        res = await self._scf.request(
            "ListFunctions", {"Namespace": namespace, "Limit": limit, "Offset": offset}
        )
        keys = ("FunctionId", "FunctionName", "Runtime", "AddTime", "ModTime", "Status")
        return [{k: item.get(k) for k in keys} for item in res.get("Functions") or []]

    async def delete_function(self, name: str) -> dict[str, Any]:
        namespace = await self._namespace()
        return await self._scf.request(
            "DeleteFunction", {"FunctionName": name, "Namespace": namespace}
        )

    async def get_function_detail(
        self, name: str, code_secret: str | None = None
    ) -> dict[str, Any]:
        """GetFunction, with VpcConfig expanded to the full VPC and subnet records."""
        namespace = await self._namespace()
        data = await self._scf.request(
            "GetFunction",
            {
                "FunctionName": name,
                "Namespace": namespace,
                "ShowCode": "TRUE",
                "CodeSecret": code_secret or None,
            },
        )
        vpc_config = data.get("VpcConfig") or {}
        vpc_id = vpc_config.get("VpcId", "")
        subnet_id = vpc_config.get("SubnetId", "")
        if vpc_id and subnet_id:
            try:
                vpcs = await self._vpc.request("DescribeVpcs")
                subnets = await self._vpc.request(
                    "DescribeSubnets", {"Filters": [{"Name": "vpc-id", "Values": [vpc_id]}]}
                )
                data["VpcConfig"] = {
                    "vpc": next((v for v in vpcs.get("VpcSet") or [] if v.get("VpcId") == vpc_id), None),
                    "subnet": next(
                        (s for s in subnets.get("SubnetSet") or [] if s.get("SubnetId") == subnet_id),
                        None,
                    ),
                }
            except CloudBaseError as exc:
                log.warning("function.vpc_lookup_failed", function=name, code=exc.code)
                data["VPC"] = {"vpc": "", "subnet": ""}
        return data

    async def get_function_logs(
        self,
        name: str,
        *,
        offset: int = 0,
        limit: int = 10,
        order: str | None = None,
        order_by: str | None = None,
        start_time: str | None = None,
        end_time: str | None = None,
        request_id: str | None = None,
    ) -> dict[str, Any]:
        namespace = await self._namespace()
        return await self._scf.request(
            "GetFunctionLogs",
            {
                "Namespace": namespace,
                "FunctionName": name,
                "Offset": offset,
                "Limit": limit,
                "Order": order,
                "OrderBy": order_by,
                "StartTime": start_time,
                "EndTime": end_time,
                "FunctionRequestId": request_id,
            },
        )

    async def get_function_download_url(
        self, name: str, code_secret: str | None = None
    ) -> dict[str, Any]:
        namespace = await self._namespace()
        try:
            res = await self._scf.request(
                "GetFunctionAddress",
                {"FunctionName": name, "Namespace": namespace, "CodeSecret": code_secret or None},
            )
        except CloudBaseError as exc:
            raise CloudBaseError(
                f"[{name}] failed to get code download url:\n{exc.message}",
                code=exc.code,
                request_id=exc.request_id,
                original=exc,
            ) from exc
        return {
            "Url": res.get("Url"),
            "RequestId": res.get("RequestId"),
            "CodeSha256": res.get("CodeSha256"),
        }

    async def wait_function_active(self, name: str, code_secret: str | None = None) -> str:
        """Poll until the function leaves Creating/Updating; return the final status."""
        while True:
            detail = await self.get_function_detail(name, code_secret)
            status = detail.get("Status", "")
            await clock.sleep(WAIT_INTERVAL_SECONDS)
            if status not in (STATUS_CREATING, STATUS_UPDATING):
                return status

    # ── Invoke / copy ─────────────────────────────────────────────────────────

    async def invoke_function(
        self, name: str, params: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        namespace = await self._namespace()
        request: dict[str, Any] = {"FunctionName": name, "Namespace": namespace, "LogType": "Tail"}
        if params is not None:
            request["ClientContext"] = json.dumps(params, ensure_ascii=False)
        try:
            res = await self._scf.request("Invoke", request)
        except CloudBaseError as exc:
            raise CloudBaseError(
                f"[{name}] invoke failed:\n{exc.message}",
                code=exc.code,
                request_id=exc.request_id,
                original=exc,
            ) from exc
        return {"RequestId": res.get("RequestId"), **(res.get("Result") or {})}

    async def copy_function(
        self,
        name: str,
        new_function_name: str,
        target_env_id: str | None = None,
        force: bool = False,
    ) -> dict[str, Any]:
        namespace = await self._namespace()
        if not name or not new_function_name:
            raise ValidationError(
                "name and new_function_name are required",
                fields={"name": name, "new_function_name": new_function_name},
            )
        return await self._scf.request(
            "CopyFunction",
            {
                "FunctionName": name,
                "NewFunctionName": new_function_name,
                "Namespace": namespace,
                "TargetNamespace": target_env_id or namespace,
                "Override": bool(force),
            },
        )

    # ── Triggers ──────────────────────────────────────────────────────────────

    async def create_function_triggers(
        self,
        name: str,
        triggers: list[FunctionTrigger] | list[dict[str, Any]] | None = None,
    ) -> dict[str, Any] | None:
        """BatchCreateTrigger for timer triggers. No triggers → no call, ``None``."""
        if not triggers:
            return None
        parsed = []
        for trigger in triggers:
            trigger = validate_input(FunctionTrigger, trigger)
            if trigger.type not in SUPPORTED_TRIGGER_TYPES:
                raise ValidationError(
                    f"unsupported trigger type [{trigger.type}], only timer triggers are supported",
                    fields={"type": trigger.type},
                )
            parsed.append(
                {"TriggerName": trigger.name, "Type": trigger.type, "TriggerDesc": trigger.config}
            )
        namespace = await self._namespace()
        return await self._scf.request(
            "BatchCreateTrigger",
            {
                "FunctionName": name,
                "Namespace": namespace,
                "Triggers": json.dumps(parsed, separators=(",", ":"), ensure_ascii=False),
                "Count": len(parsed),
            },
        )

    async def delete_function_trigger(self, name: str, trigger_name: str) -> dict[str, Any]:
        namespace = await self._namespace()
        return await self._scf.request(
            "DeleteTrigger",
            {
                "FunctionName": name,
                "Namespace": namespace,
                "TriggerName": trigger_name,
                "Type": "timer",
            },
        )

    # ── Layers ────────────────────────────────────────────────────────────────

    async def create_layer(
        self,
        name: str,
        runtimes: list[str],
        *,
        content_path: str = "",
        base64_content: str = "",
        description: str = "",
        license_info: str = "",
    ) -> dict[str, Any]:
        if base64_content:
            content = base64_content
        elif content_path and Path(content_path).is_dir():
            content = (await FunctionPacker(function_path=content_path, name=name).build()).base64
        else:
            content = await read_zip_base64(content_path)
        return await self._scf.request(
            "PublishLayerVersion",
            {
                "LayerName": name,
                "CompatibleRuntimes": runtimes,
                "Content": {"ZipFile": content},
                "Description": description,
                "LicenseInfo": license_info,
            },
        )

    async def delete_layer_version(self, name: str, version: int) -> dict[str, Any]:
        return await self._scf.request(
            "DeleteLayerVersion", {"LayerName": name, "LayerVersion": version}
        )

    async def list_layer_versions(
        self, name: str, runtimes: list[str] | None = None
    ) -> dict[str, Any]:
        return await self._scf.request(
            "ListLayerVersions", {"LayerName": name, "CompatibleRuntime": runtimes or None}
        )

    async def list_layers(
        self,
        *,
        limit: int = 20,
        offset: int = 0,
        runtime: str | None = None,
        search_key: str | None = None,
    ) -> dict[str, Any]:
        return await self._scf.request(
            "ListLayers",
            {
                "Limit": limit,
                "Offset": offset,
                "SearchKey": search_key,
                "CompatibleRuntime": runtime or None,
            },
        )

    async def get_layer_version(self, name: str, version: int) -> dict[str, Any]:
        return await self._scf.request(
            "GetLayerVersion", {"LayerName": name, "LayerVersion": version}
        )


__all__ = [
    "FunctionService",
    "CloudFunction",
    "FunctionTrigger",
    "FunctionVpc",
    "LayerRef",
    "config_to_params",
    "config_update_params",
    "install_dependency_flag",
    "is_node_runtime",
]
