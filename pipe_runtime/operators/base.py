from __future__ import annotations

import math
from collections.abc import Mapping
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, ValidationError

from pipe_runtime.engine.catalog import Operator, ValidationResult
from pipe_runtime.engine.models import ExecutionContext


ConfigT = TypeVar("ConfigT", bound=BaseModel)

MISSING = object()


class OperatorError(RuntimeError):
    """Raised by operators when their input or configuration cannot be processed."""


class OperatorConfig(BaseModel):
    """Base for operator configs; wire names are camelCase aliases."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ConfiguredOperator(Operator, Generic[ConfigT]):
    """Operator whose configuration is described by a pydantic model."""

    config_model: type[ConfigT]

    def parse_config(self, config: Any) -> ConfigT:
        if isinstance(config, self.config_model):
            return config
        if config is None:
            raise OperatorError(f"{self.type}: configuration is required.")
        try:
            return self.config_model.model_validate(config)
        except ValidationError as exc:
            raise OperatorError(f"{self.type}: {first_validation_message(exc)}") from exc

    def validate(self, config: Any) -> ValidationResult:
        if config is None:
            return ValidationResult(valid=False, error="Configuration is required.")
        try:
            self.config_model.model_validate(config)
        except ValidationError as exc:
            return ValidationResult(valid=False, error=first_validation_message(exc))
        return ValidationResult(valid=True)


class ItemsOperator(ConfiguredOperator[ConfigT]):
    """Transform over a list of items that leaves the item shape unchanged."""

    def get_output_schema(
        self,
        input_schema: Mapping[str, Any] | None = None,
        config: Any = None,
    ) -> dict[str, Any] | None:
        if input_schema is None:
            return None
        return dict(input_schema)

    def require_items(self, input_data: object, *, allow_none: bool = False) -> list[Any]:
        if input_data is None and allow_none:
            return []
        if not self.is_sequence(input_data):
            raise OperatorError(
                f"{self.type.capitalize()} operator requires array input, received "
                f"{describe_type(input_data)}. Make sure the upstream operator outputs an array of items."
            )
        return list(input_data)  # type: ignore[arg-type]


class PerItemOperator(ItemsOperator[ConfigT]):
    """Applies ``transform_item`` to a single item or to every item of a list.

    ``None`` input passes through as ``None``; non-object items are returned unchanged.
    """

    async def execute(self, input_data: object, config: Any, context: ExecutionContext) -> object:
        if input_data is None:
            return None
        settings = self.parse_config(config)
        if self.is_sequence(input_data):
            return [self._apply(item, settings) for item in input_data]  # type: ignore[union-attr]
        return self._apply(input_data, settings)

    def _apply(self, item: object, settings: ConfigT) -> object:
        if not isinstance(item, Mapping):
            return item
        return self.transform_item(item, settings)

    def transform_item(self, item: Mapping[str, Any], settings: ConfigT) -> object:
        raise NotImplementedError


def first_validation_message(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return str(exc)
    first = errors[0]
    message = str(first.get("msg", "invalid value"))
    message = message.removeprefix("Value error, ")
    location = ".".join(str(part) for part in first.get("loc", ()))
    if location:
        return f"{location}: {message}"
    return message


def describe_type(value: object) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, Mapping):
        return "object"
    if isinstance(value, (list, tuple)):
        return "array"
    return type(value).__name__


def parse_number(raw: object) -> int | float | None:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return None if isinstance(raw, float) and math.isnan(raw) else raw
    if isinstance(raw, str):
        text = raw.strip()
        try:
            return int(text)
        except ValueError:
            pass
        try:
            value = float(text)
        except ValueError:
            return None
        return None if math.isnan(value) else value
    return None


def with_nested_value(item: Mapping[str, Any], path: str, value: object) -> dict[str, Any]:
    """Copy of ``item`` with ``value`` stored at dotted ``path``.

    Only the mappings along the path are copied; missing or non-mapping
    segments are replaced by new dicts.
    """
    head, _, rest = path.partition(".")
    result = dict(item)
    if not rest:
        result[head] = value
        return result
    child = result.get(head)
    result[head] = with_nested_value(child if isinstance(child, Mapping) else {}, rest, value)
    return result


def without_nested_value(item: Mapping[str, Any], path: str) -> dict[str, Any]:
    """Copy of ``item`` with the key at dotted ``path`` removed, if present."""
    head, _, rest = path.partition(".")
    result = dict(item)
    if not rest:
        result.pop(head, None)
        return result
    child = result.get(head)
    if isinstance(child, Mapping):
        result[head] = without_nested_value(child, rest)
    return result
