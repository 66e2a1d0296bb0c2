"""
cloudbase_manager.tier0_core.credentials
─────────────────────────────────────────
Credential model and resolution. Secrets are wrapped in SecretStr; they
cannot be logged or serialized by accident.

Resolution order for every request:
  1. explicit secret id / key given to the manager
  2. TENCENTCLOUD_SECRETID / TENCENTCLOUD_SECRETKEY / TENCENTCLOUD_SESSIONTOKEN

Inside a managed cloud-function runtime (TENCENTCLOUD_RUNENV=SCF) missing
credentials mean the function was deployed without its role key, so the
error tells the caller to redeploy.
"""
from __future__ import annotations

from dataclasses import dataclass

from cloudbase_manager.tier0_core.config import CredentialSettings
from cloudbase_manager.tier0_core.errors import ConfigurationError, CredentialsMissingError

MISSING_IN_RUNTIME = "missing authoration key, redeploy the function"
MISSING_IN_SHELL = "missing secretId or secretKey of tencent cloud"


# ── SecretStr: never logged or serialized ─────────────────────────────────────

class SecretStr:
    """
    Wrapper that hides the secret value from logs, repr, and JSON.
    Access the raw value only via .get_secret_value().
    """

    def __init__(self, value: str) -> None:
        self._value = value

    def get_secret_value(self) -> str:
        return self._value

    def __bool__(self) -> bool:
        return bool(self._value)

    def __repr__(self) -> str:
        return "SecretStr('**********')"

    def __str__(self) -> str:
        return "**********"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, SecretStr):
            return self._value == other._value
        return False

    def __hash__(self) -> int:
        return hash(self._value)


def _wrap(value: str | SecretStr | None) -> SecretStr | None:
    if value is None or isinstance(value, SecretStr):
        return value or None
    return SecretStr(value) if value else None


# ── Context ───────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class CloudBaseContext:
    """
    Caller-supplied connection settings, immutable per manager.
    ``secret_id`` and ``secret_key`` are either both set or both empty.
    """

    secret_id: str = ""
    secret_key: SecretStr | None = None
    token: SecretStr | None = None
    proxy: str = ""

    @classmethod
    def create(
        cls,
        secret_id: str | None = None,
        secret_key: str | SecretStr | None = None,
        token: str | SecretStr | None = None,
        proxy: str | None = None,
    ) -> "CloudBaseContext":
        key = _wrap(secret_key)
        if bool(secret_id) != bool(key):
            raise ConfigurationError("secretId and secretKey must be a pair")
        return cls(
            secret_id=secret_id or "",
            secret_key=key,
            token=_wrap(token),
            proxy=proxy or "",
        )


@dataclass(frozen=True)
class Credentials:
    """Resolved credentials for one request. Never mutated after resolution."""

    secret_id: str
    secret_key: SecretStr
    session_token: SecretStr | None = None
    proxy: str = ""

    def __repr__(self) -> str:
        return (
            f"Credentials(secret_id={self.secret_id!r}, secret_key={self.secret_key!r}, "
            f"session_token={'set' if self.session_token else None}, proxy={self.proxy!r})"
        )


# ── Resolution ────────────────────────────────────────────────────────────────

def resolve_credentials(
    context: CloudBaseContext | None = None,
    config: CredentialSettings | None = None,
) -> Credentials:
    """
    Return the credentials a request should be signed with.
    Raises CredentialsMissingError when neither source provides a pair.

    Without an injected ``config`` the credential variables are read from
    the environment on this call, so rotated keys take effect immediately.
    """
    context = context or CloudBaseContext()

    if context.secret_id and context.secret_key:
        return Credentials(
            secret_id=context.secret_id,
            secret_key=context.secret_key,
            session_token=context.token,
            proxy=context.proxy,
        )

    config = config if config is not None else CredentialSettings()
    if not config.secret_id or not config.secret_key:
        if config.is_managed_runtime:
            raise CredentialsMissingError(MISSING_IN_RUNTIME)
        raise CredentialsMissingError(MISSING_IN_SHELL)

    return Credentials(
        secret_id=config.secret_id,
        secret_key=SecretStr(config.secret_key),
        session_token=_wrap(config.session_token),
        proxy=context.proxy,
    )


__all__ = [
    "SecretStr",
    "CloudBaseContext",
    "Credentials",
    "resolve_credentials",
    "MISSING_IN_RUNTIME",
    "MISSING_IN_SHELL",
]
