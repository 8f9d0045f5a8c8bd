from __future__ import annotations

from typing import Any, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from backend.app.core.errors import ValidationError

M = TypeVar("M", bound=BaseModel)


def validate_as(schema: type[M], data: Any) -> M:
    """Valide un payload brut ; les erreurs pydantic deviennent des ValidationError métier."""
    if isinstance(data, schema):
        return data
    try:
        return schema.model_validate(data if data is not None else {})
    except PydanticValidationError as exc:
        errors: dict[str, list[str]] = {}
        for err in exc.errors():
            field = ".".join(str(part) for part in err["loc"]) or "payload"
            errors.setdefault(field, []).append(err["msg"])
        raise ValidationError(errors) from exc
