"""Validation helpers for service settings."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from pydantic_settings import EnvSettingsSource

if TYPE_CHECKING:
    from pydantic.fields import FieldInfo


def parse_origins(value: str | list[str]) -> list[str]:
    """Parse CORS origins from a list, a JSON array string or a comma-separated string.

    An empty list is allowed (CORS disabled); malformed JSON raises ValueError.
    """
    if isinstance(value, list):
        return value
    stripped = value.strip()
    if stripped.startswith("["):
        try:
            parsed = json.loads(stripped)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON array: {e}") from e
        if not isinstance(parsed, list) or not all(isinstance(item, str) for item in parsed):
            raise ValueError("JSON value must be an array of strings")
        return parsed
    return [origin.strip() for origin in stripped.split(",") if origin.strip()]


class RawOriginsEnvSource(EnvSettingsSource):
    """Hand ``cors_origins`` to its validator as the raw env string.

    pydantic-settings would otherwise insist on JSON for list-typed fields.
    """

    def prepare_field_value(
        self,
        field_name: str,
        field: FieldInfo,
        value: Any,  # noqa: ANN401
        value_is_complex: bool,  # noqa: FBT001
    ) -> Any:  # noqa: ANN401
        if field_name == "cors_origins" and isinstance(value, str):
            return value
        return super().prepare_field_value(field_name, field, value, value_is_complex)
