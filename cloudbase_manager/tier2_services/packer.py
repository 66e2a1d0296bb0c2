"""
cloudbase_manager.tier2_services.packer
────────────────────────────────────────
Function source packaging. Zips a function directory in memory and returns
the base64 text that the function API accepts as ``Code.ZipFile``. Java
functions ship a prebuilt ``.jar``/``.zip`` which is read as-is.

Ignore patterns are shell-style globs matched against paths relative to the
function directory; a pattern that matches a directory excludes everything
below it.
"""
from __future__ import annotations

import asyncio
import base64
import enum
import fnmatch
import io
import zipfile
from dataclasses import dataclass
from pathlib import Path

from cloudbase_manager.tier0_core.errors import NotFoundError, ValidationError

# Largest zip the API accepts inline
API_MAX_SIZE = 52428800
# Largest caller-supplied base64 payload
MAX_BASE64_LENGTH = 167772160

NODE_MODULES_IGNORE = ["node_modules/**/*", "node_modules"]


class CodeType(enum.Enum):
    FILE = "file"
    JAVA_FILE = "java"


@dataclass(frozen=True)
class PackedCode:
    base64: str
    size: int


def _as_list(patterns: str | list[str] | None) -> list[str]:
    if not patterns:
        return []
    if isinstance(patterns, str):
        return [patterns]
    return list(patterns)


def is_ignored(relative: str, patterns: list[str]) -> bool:
    parts = relative.split("/")
    candidates = ["/".join(parts[: i + 1]) for i in range(len(parts))]
    return any(fnmatch.fnmatch(c, p) for c in candidates for p in patterns)


class FunctionPacker:
    """
    Usage:
        packer = FunctionPacker(root="functions", name="app", ignore=["*.md"])
        code = await packer.build()
        params["Code"] = {"ZipFile": code.base64}
    """

    def __init__(
        self,
        root: str | Path | None = None,
        name: str = "",
        ignore: str | list[str] | None = None,
        *,
        function_path: str | Path | None = None,
        code_type: CodeType = CodeType.FILE,
        incremental_path: str | None = None,
    ) -> None:
        if function_path is None and root is None:
            raise ValidationError("either root or function_path is required")
        self.name = name
        self.ignore = _as_list(ignore)
        self.code_type = code_type
        self.incremental_path = incremental_path
        self.func_path = Path(function_path) if function_path else Path(root or ".") / name

    async def build(self) -> PackedCode:
        raw = await asyncio.to_thread(self._build_sync)
        if len(raw) > API_MAX_SIZE:
            raise ValidationError(
                f"function code must not exceed {API_MAX_SIZE // (1024 * 1024)}MB after packing",
                fields={"size": len(raw)},
            )
        return PackedCode(base64=base64.b64encode(raw).decode("ascii"), size=len(raw))

    def _build_sync(self) -> bytes:
        if self.code_type is CodeType.JAVA_FILE:
            return self._java_archive().read_bytes()
        return self._zip_directory()

    def _java_archive(self) -> Path:
        base = str(self.func_path)
        for suffix in (".jar", ".zip"):
            if base.endswith(suffix):
                base = base[: -len(suffix)]
        for suffix in (".jar", ".zip"):
            candidate = Path(base + suffix)
            if candidate.is_file():
                return candidate
        raise NotFoundError(f"no .jar or .zip archive found for function {self.name!r}")

    def _zip_directory(self) -> bytes:
        root = self.func_path
        if not root.is_dir():
            raise NotFoundError(f"function directory {str(root)!r} does not exist")

        selected = root
        if self.incremental_path:
            selected = root / self.incremental_path
            if not selected.exists():
                raise NotFoundError(f"incremental path {self.incremental_path!r} does not exist")

        files = [selected] if selected.is_file() else sorted(selected.rglob("*"))
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
            for path in files:
                if not path.is_file():
                    continue
                relative = path.relative_to(root).as_posix()
                if is_ignored(relative, self.ignore):
                    continue
                archive.write(path, relative)
        return buffer.getvalue()


async def read_zip_base64(path: str | Path) -> str:
    """Base64 of an existing ``.zip`` file (layer uploads)."""
    path = Path(path)
    if path.suffix != ".zip":
        raise ValidationError("only ZIP files are supported", fields={"path": str(path)})
    raw = await asyncio.to_thread(path.read_bytes)
    return base64.b64encode(raw).decode("ascii")


__all__ = [
    "FunctionPacker",
    "PackedCode",
    "CodeType",
    "read_zip_base64",
    "is_ignored",
    "API_MAX_SIZE",
    "MAX_BASE64_LENGTH",
    "NODE_MODULES_IGNORE",
]
