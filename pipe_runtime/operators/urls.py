from __future__ import annotations

from collections.abc import Mapping
from typing import Any
from urllib.parse import urlencode, urlsplit, urlunsplit

from pydantic import Field, field_validator, model_validator

from pipe_runtime.engine.models import ExecutionContext
from pipe_runtime.operators.base import ConfiguredOperator, OperatorConfig
from pipe_runtime.operators.sources import is_http_url


class UrlParam(OperatorConfig):
    key: str = Field(min_length=1)
    value: str | None = None
    from_input: str | None = Field(default=None, alias="fromInput")

    @model_validator(mode="after")
    def _check_source(self) -> UrlParam:
        if self.value is None and not self.from_input:
            raise ValueError(f"Param {self.key} must have either value or fromInput")
        return self


class UrlBuilderConfig(OperatorConfig):
    base_url: str = Field(alias="baseUrl", min_length=1)
    params: list[UrlParam] = Field(default_factory=list)

    @field_validator("base_url")
    @classmethod
    def _check_base_url(cls, value: str) -> str:
        if not is_http_url(value):
            raise ValueError("Base URL must be a valid URL")
        return value


def build_url(base_url: str, params: list[tuple[str, str]]) -> str:
    """Append form-encoded ``params`` to the query of ``base_url``, keeping what is already there."""
    parts = urlsplit(base_url)
    query = parts.query
    if params:
        extra = urlencode(params)
        query = f"{query}&{extra}" if query else extra
    return urlunsplit((parts.scheme, parts.netloc, parts.path or "/", query, parts.fragment))


class UrlBuilderOperator(ConfiguredOperator[UrlBuilderConfig]):
    type = "url-builder"
    category = "url"
    description = "Build URLs with query parameters"
    config_model = UrlBuilderConfig

    async def execute(self, input_data: object, config: Any, context: ExecutionContext) -> object:
        settings = self.parse_config(config)
        params = [(param.key, self._param_value(param, context)) for param in settings.params]
        return {"url": build_url(settings.base_url, params), "input": input_data}

    def _param_value(self, param: UrlParam, context: ExecutionContext) -> str:
        if param.from_input:
            supplied = context.user_inputs.get(param.from_input)
            if supplied is not None:
                return str(supplied)
        return param.value or ""

    def get_output_schema(
        self,
        input_schema: Mapping[str, Any] | None = None,
        config: Any = None,
    ) -> dict[str, Any]:
        input_type = "array" if input_schema and input_schema.get("rootType") == "array" else "object"
        return {
            "fields": [
                {"name": "url", "path": "url", "type": "string"},
                {"name": "input", "path": "input", "type": input_type},
            ],
            "rootType": "object",
        }
