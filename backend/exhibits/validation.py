from __future__ import annotations

import json
import logging
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ValidationError

from .exceptions import ValidationFailed

logger = logging.getLogger(__name__)

_TRUTHY = {True, 1, "1", "true", "True"}


def validate(schema: type[BaseModel], data: Any, *, context: str = "") -> BaseModel:
    """Validate ``data`` against ``schema`` or raise ``ValidationFailed``.

    The error list keeps one entry per pydantic error with a ``message`` key
    so clients can render it directly.
    """

    if not isinstance(data, dict):
        logger.error("invalid input data format context=%s", context)
        raise ValidationFailed("Invalid input data format")
    try:
        return schema.model_validate(data)
    except ValidationError as exc:
        errors = [
            {
                "message": error["msg"],
                "field": ".".join(str(part) for part in error["loc"]),
                "type": error["type"],
            }
            for error in exc.errors()
        ]
        logger.error("validation failed context=%s message=%s", context, errors[0]["message"])
        raise ValidationFailed(errors) from exc


def parse_uuid(value: Any) -> UUID | None:
    if isinstance(value, UUID):
        return value
    if not value or not isinstance(value, str):
        return None
    try:
        return UUID(value.strip())
    except ValueError:
        return None


def is_truthy_flag(value: Any) -> bool:
    return isinstance(value, (bool, int, str)) and value in _TRUTHY


def prepare_styles(styles: Any) -> str:
    """Normalise a styles payload to the JSON text stored on the record."""

    if not styles:
        return json.dumps({})
    if isinstance(styles, str):
        return styles
    return json.dumps(styles)


def load_styles(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("stored styles are not valid JSON")
        return {}
    return parsed if isinstance(parsed, dict) else {}
