"""
cloudbase_manager
─────────────────
Stable top-level exports. Import from here, not from sub-modules directly.
Every name exported here is part of the public API and subject to semver.
"""
from cloudbase_manager.tier0_core.logging import get_logger
from cloudbase_manager.tier0_core.errors import (
    CloudBaseError,
    ConfigurationError,
    CredentialsMissingError,
    ValidationError,
    NotFoundError,
    InvalidOperationError,
    TransportError,
    ResponseParseError,
    RemoteServiceError,
    SagaCompensationError,
)
from cloudbase_manager.tier0_core.config import get_config, ManagerConfig
from cloudbase_manager.tier0_core.credentials import CloudBaseContext, SecretStr

from cloudbase_manager.tier1_runtime.cloud_api import CloudService
from cloudbase_manager.tier1_runtime.parallel import ParallelTaskRunner
from cloudbase_manager.tier1_runtime.retry import call_with_retry, fixed_retry
from cloudbase_manager.tier1_runtime.validate import validate_input

from cloudbase_manager.tier2_services.function import CloudFunction
from cloudbase_manager.tier2_services.object_store import CosObjectStore, MemoryObjectStore
from cloudbase_manager.tier2_services.packer import CodeType, FunctionPacker

from cloudbase_manager.tier3_platform.environment import Environment
from cloudbase_manager.tier3_platform.manager import CloudBase, EnvironmentManager, create_manager

__version__ = "0.1.0"
__all__ = [
    # logging
    "get_logger",
    # errors
    "CloudBaseError", "ConfigurationError", "CredentialsMissingError",
    "ValidationError", "NotFoundError", "InvalidOperationError",
    "TransportError", "ResponseParseError", "RemoteServiceError",
    "SagaCompensationError",
    # config
    "get_config", "ManagerConfig",
    # credentials
    "CloudBaseContext", "SecretStr",
    # request layer
    "CloudService",
    # runner
    "ParallelTaskRunner",
    # retry
    "call_with_retry", "fixed_retry",
    # validate
    "validate_input",
    # functions
    "CloudFunction", "CodeType", "FunctionPacker",
    # object storage
    "CosObjectStore", "MemoryObjectStore",
    # manager
    "CloudBase", "EnvironmentManager", "Environment", "create_manager",
]
