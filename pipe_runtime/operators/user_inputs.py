from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import Field, model_validator

from pipe_runtime.engine.models import ExecutionContext
from pipe_runtime.operators.base import ConfiguredOperator, OperatorConfig, OperatorError, parse_number
from pipe_runtime.operators.sources import is_http_url, is_public_http_url
from pipe_runtime.operators.transforms import parse_datetime


class TextInputConfig(OperatorConfig):
    label: str = Field(min_length=1)
    default_value: str | None = Field(default=None, alias="defaultValue")
    placeholder: str | None = None
    required: bool = False


class NumberInputConfig(OperatorConfig):
    label: str = Field(min_length=1)
    default_value: float | str | None = Field(default=None, alias="defaultValue")
    min: float | None = None
    max: float | None = None
    step: float | None = Field(default=None, gt=0)
    required: bool = False

    @model_validator(mode="after")
    def _check_bounds(self) -> NumberInputConfig:
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError("Min cannot be greater than max")
        if isinstance(self.default_value, str) and self.default_value.strip():
            if parse_number(self.default_value) is None:
                raise ValueError("Default value must be a valid number")
        return self


def lookup_user_input(context: ExecutionContext, label: str) -> object:
    """Value supplied at run time for ``label``; ``None`` when absent."""
    return context.user_inputs.get(label)


class TextInputOperator(ConfiguredOperator[TextInputConfig]):
    type = "text-input"
    category = "user-inputs"
    description = "Text input parameter for the pipe"
    config_model = TextInputConfig

    async def execute(self, input_data: object, config: Any, context: ExecutionContext) -> object:
        settings = self.parse_config(config)

        supplied = lookup_user_input(context, settings.label)
        value = str(supplied) if supplied is not None else settings.default_value

        if settings.required and (value is None or not value.strip()):
            raise OperatorError(f'Text input "{settings.label}" is required')
        return value or ""

    def get_output_schema(self, input_schema: Any = None, config: Any = None) -> dict[str, Any]:
        return {
            "fields": [{"name": "value", "path": "value", "type": "string", "sample": ""}],
            "rootType": "object",
        }


class NumberInputOperator(ConfiguredOperator[NumberInputConfig]):
    type = "number-input"
    category = "user-inputs"
    description = "Numeric input with optional min/max constraints"
    config_model = NumberInputConfig

    async def execute(self, input_data: object, config: Any, context: ExecutionContext) -> object:
        settings = self.parse_config(config)
        label = settings.label

        raw = lookup_user_input(context, label)
        if raw is None:
            raw = settings.default_value

        blank = raw is None or (isinstance(raw, str) and not raw.strip())
        if blank:
            if settings.required:
                raise OperatorError(f'Number input "{label}" is required')
            return 0

        value = parse_number(raw)
        if value is None:
            raise OperatorError(f'Number input "{label}" must be a valid number')
        if settings.min is not None and value < settings.min:
            raise OperatorError(f'Number input "{label}" must be at least {settings.min:g}')
        if settings.max is not None and value > settings.max:
            raise OperatorError(f'Number input "{label}" must be at most {settings.max:g}')
        return value

    def get_output_schema(self, input_schema: Any = None, config: Any = None) -> dict[str, Any]:
        return {
            "fields": [{"name": "value", "path": "value", "type": "number", "sample": 0}],
            "rootType": "object",
        }


class UrlInputConfig(OperatorConfig):
    label: str = Field(min_length=1)
    default_value: str | None = Field(default=None, alias="defaultValue")
    placeholder: str | None = None
    required: bool = False

    @model_validator(mode="after")
    def _check_default(self) -> UrlInputConfig:
        if self.default_value and self.default_value.strip():
            if not is_http_url(self.default_value):
                raise ValueError("Default value must be a valid URL")
            if not is_public_http_url(self.default_value):
                raise ValueError("Default value cannot be localhost or private IP")
        return self


class DateInputConfig(OperatorConfig):
    label: str = Field(min_length=1)
    default_value: str | None = Field(default=None, alias="defaultValue")
    min_date: str | None = Field(default=None, alias="minDate")
    max_date: str | None = Field(default=None, alias="maxDate")
    required: bool = False

    @model_validator(mode="after")
    def _check_dates(self) -> DateInputConfig:
        if self.default_value and self.default_value.strip() and parse_datetime(self.default_value) is None:
            raise ValueError("Default value must be a valid date")
        earliest = self._bound(self.min_date, "Min date")
        latest = self._bound(self.max_date, "Max date")
        if earliest is not None and latest is not None and earliest > latest:
            raise ValueError("Min date cannot be after max date")
        return self

    @staticmethod
    def _bound(value: str | None, name: str) -> datetime | None:
        if value is None:
            return None
        parsed = parse_datetime(value)
        if parsed is None:
            raise ValueError(f"{name} must be a valid date")
        return parsed


def supplied_text(context: ExecutionContext, label: str, default: str | None) -> str:
    """Run-time value for ``label`` as text, else the default; blank when neither is set."""
    supplied = lookup_user_input(context, label)
    value = str(supplied) if supplied is not None else default
    return (value or "").strip()


def to_iso_utc(value: datetime) -> str:
    """``2024-01-15T00:00:00.000Z`` style timestamp."""
    moment = value.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


class UrlInputOperator(ConfiguredOperator[UrlInputConfig]):
    type = "url-input"
    category = "user-inputs"
    description = "URL input with validation"
    config_model = UrlInputConfig

    async def execute(self, input_data: object, config: Any, context: ExecutionContext) -> object:
        settings = self.parse_config(config)
        label = settings.label

        value = supplied_text(context, label, settings.default_value)
        if not value:
            if settings.required:
                raise OperatorError(f'URL input "{label}" is required')
            return ""

        if not is_http_url(value):
            raise OperatorError(f'URL input "{label}" has invalid URL format')
        if not is_public_http_url(value):
            raise OperatorError(f'URL input "{label}": localhost and private IPs are not allowed')
        return value

    def get_output_schema(self, input_schema: Any = None, config: Any = None) -> dict[str, Any]:
        return {
            "fields": [{"name": "value", "path": "value", "type": "string", "sample": "https://example.com"}],
            "rootType": "object",
        }


class DateInputOperator(ConfiguredOperator[DateInputConfig]):
    type = "date-input"
    category = "user-inputs"
    description = "Date input parameter"
    config_model = DateInputConfig

    async def execute(self, input_data: object, config: Any, context: ExecutionContext) -> object:
        settings = self.parse_config(config)
        label = settings.label

        value = supplied_text(context, label, settings.default_value)
        if not value:
            if settings.required:
                raise OperatorError(f'Date input "{label}" is required')
            return ""

        parsed = parse_datetime(value)
        if parsed is None:
            raise OperatorError(f'Date input "{label}" has invalid date format')
        earliest = parse_datetime(settings.min_date) if settings.min_date else None
        latest = parse_datetime(settings.max_date) if settings.max_date else None
        if earliest is not None and parsed < earliest:
            raise OperatorError(f'Date input "{label}" must be on or after {settings.min_date}')
        if latest is not None and parsed > latest:
            raise OperatorError(f'Date input "{label}" must be on or before {settings.max_date}')
        return to_iso_utc(parsed)

    def get_output_schema(self, input_schema: Any = None, config: Any = None) -> dict[str, Any]:
        return {
            "fields": [{"name": "value", "path": "value", "type": "string", "sample": "2024-01-15T00:00:00.000Z"}],
            "rootType": "object",
        }
