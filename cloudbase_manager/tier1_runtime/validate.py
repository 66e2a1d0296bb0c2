"""
cloudbase_manager.tier1_runtime.validate
─────────────────────────────────────────
Input validation via Pydantic v2. Raises the manager's ValidationError
(not raw Pydantic errors) so callers handle one error family.
"""
from __future__ import annotations

from typing import Any, Type, TypeVar

from pydantic import BaseModel, ValidationError as PydanticValidationError

from cloudbase_manager.tier0_core.errors import ValidationError

T = TypeVar("T", bound=BaseModel)


def validate_input(model: Type[T], data: Any) -> T:
    """
    Validate raw data against a Pydantic model. Model instances pass through.

    Usage:
        func = validate_input(CloudFunction, {"name": "app", "runtime": "Nodejs10.15"})
    """
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        fields = {
            ".".join(str(loc) for loc in err["loc"]): err["msg"]
            for err in exc.errors()
        }
        raise ValidationError(
            f"{model.__name__} validation failed.",
            fields=fields,
            original=exc,
        ) from exc


__all__ = ["validate_input"]
