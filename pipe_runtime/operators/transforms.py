from __future__ import annotations

import json
import re
from collections.abc import Mapping
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from functools import cmp_to_key
from typing import Any, Literal

from pydantic import Field, model_validator

from pipe_runtime.engine.catalog import Operator, ValidationResult
from pipe_runtime.engine.models import ExecutionContext
from pipe_runtime.operators.base import (
    MISSING,
    ItemsOperator,
    OperatorConfig,
    OperatorError,
    PerItemOperator,
    with_nested_value,
    without_nested_value,
)


MAX_REGEX_LENGTH = 500

RuleOperator = Literal[
    "equals",
    "not_equals",
    "contains",
    "not_contains",
    "gt",
    "lt",
    "gte",
    "lte",
    "matches_regex",
]

NUMBER_PATTERN = re.compile(r"^-?\d+(\.\d+)?$")
DATE_PATTERNS = (
    re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(\.\d+)?Z?$"),
    re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(\.\d+)?[+-]\d{2}:\d{2}$"),
    re.compile(r"^\d{4}-\d{2}-\d{2}$"),
    re.compile(r"^[A-Za-z]{3},?\s+\d{1,2}\s+[A-Za-z]{3}\s+\d{4}\s+\d{2}:\d{2}:\d{2}"),
    re.compile(r"^\d{1,2}/\d{1,2}/\d{4}$"),
    re.compile(r"^\d{1,2}-\d{1,2}-\d{4}$"),
    re.compile(r"^[A-Za-z]+\s+\d{1,2},?\s+\d{4}$"),
)
DATE_FORMATS = ("%m/%d/%Y", "%m-%d-%Y", "%B %d, %Y", "%B %d %Y", "%b %d, %Y", "%b %d %Y")


class FilterRule(OperatorConfig):
    field: str = Field(min_length=1)
    operator: RuleOperator
    value: Any

    @model_validator(mode="after")
    def _check_regex(self) -> FilterRule:
        if self.operator != "matches_regex":
            return self
        if not isinstance(self.value, str):
            raise ValueError("regex pattern must be a string")
        if len(self.value) > MAX_REGEX_LENGTH:
            raise ValueError(f"regex pattern must be at most {MAX_REGEX_LENGTH} characters")
        try:
            re.compile(self.value)
        except re.error as exc:
            raise ValueError(f"invalid regex pattern: {exc}") from exc
        return self


class FilterConfig(OperatorConfig):
    rules: list[FilterRule]
    mode: Literal["permit", "block"] = "permit"
    match_mode: Literal["any", "all"] = Field(default="all", alias="matchMode")


class SortConfig(OperatorConfig):
    field: str = Field(min_length=1)
    direction: Literal["asc", "desc"]


class CountConfig(OperatorConfig):
    count: int = Field(ge=0)


class TailConfig(CountConfig):
    skip: bool = False


class UniqueConfig(OperatorConfig):
    field: str = Field(min_length=1)


class RenameMapping(OperatorConfig):
    source: str = Field(min_length=1)
    target: str = Field(min_length=1)


class RenameConfig(OperatorConfig):
    mappings: list[RenameMapping]


def loose_equals(left: object, right: object) -> bool:
    """Equality that lets form values like ``"1"`` and ``"true"`` match typed data."""
    if left is None or right is None:
        return left is None and right is None

    if isinstance(left, bool) or isinstance(right, bool):
        left_bool = _as_bool(left)
        right_bool = _as_bool(right)
        return isinstance(left_bool, bool) and isinstance(right_bool, bool) and left_bool == right_bool

    if isinstance(left, (str, int, float)) and isinstance(right, (str, int, float)):
        left_number = _as_number(left)
        right_number = _as_number(right)
        if left_number is not None and right_number is not None:
            return left_number == right_number
        return str(left) == str(right)

    return left == right


def compare_loose(left: object, right: object) -> int:
    if left is None:
        return -1
    if right is None:
        return 1
    if _is_number(left) and _is_number(right):
        return _sign(left - right)  # type: ignore[operator]
    if isinstance(left, str) and isinstance(right, str):
        return _sign_cmp(left, right)

    left_number = _as_number(left)
    right_number = _as_number(right)
    if left_number is not None and right_number is not None:
        return _sign(left_number - right_number)
    return _sign_cmp(str(left), str(right))


def compare_sort_values(left: object, right: object) -> int:
    if left == right and type(left) is type(right):
        return 0
    if isinstance(left, datetime) and isinstance(right, datetime):
        return _sign(_timestamp(left) - _timestamp(right))
    if _is_number(left) and _is_number(right):
        return _sign(left - right)  # type: ignore[operator]

    if isinstance(left, str) and isinstance(right, str):
        left_date = parse_date(left)
        right_date = parse_date(right)
        if left_date is not None and right_date is not None:
            return _sign(left_date - right_date)
        left_number = _strict_number(left)
        right_number = _strict_number(right)
        if left_number is not None and right_number is not None:
            return _sign(left_number - right_number)
        return _sign_cmp(left, right)

    if isinstance(left, bool) and isinstance(right, bool):
        return _sign(int(left) - int(right))

    left_number = _as_number(left)
    right_number = _as_number(right)
    if left_number is not None and right_number is not None:
        return _sign(left_number - right_number)
    return _sign_cmp(str(left), str(right))


def parse_date(value: str) -> float | None:
    """Timestamp for strings that look like dates, else ``None``."""
    parsed = parse_datetime(value)
    return parsed.timestamp() if parsed is not None else None


def parse_datetime(value: str) -> datetime | None:
    """Aware datetime for strings that look like dates; naive values are taken as UTC."""
    text = value.strip()
    if not any(pattern.match(text) for pattern in DATE_PATTERNS):
        return None

    parsed: datetime | None = None
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        parsed = None

    if parsed is None:
        try:
            parsed = parsedate_to_datetime(text)
        except (TypeError, ValueError, IndexError):
            parsed = None

    if parsed is None:
        for fmt in DATE_FORMATS:
            try:
                parsed = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue

    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class FilterOperator(ItemsOperator[FilterConfig]):
    type = "filter"
    category = "operators"
    description = "Filter items by rules (Permit/Block mode with any/all matching)"
    config_model = FilterConfig

    async def execute(self, input_data: object, config: Any, context: ExecutionContext) -> object:
        items = self.require_items(input_data)
        settings = self.parse_config(config)
        if not settings.rules:
            return items

        kept: list[Any] = []
        for item in items:
            if settings.match_mode == "any":
                matches = any(self._evaluate(item, rule) for rule in settings.rules)
            else:
                matches = all(self._evaluate(item, rule) for rule in settings.rules)
            if matches == (settings.mode == "permit"):
                kept.append(item)
        return kept

    def _evaluate(self, item: object, rule: FilterRule) -> bool:
        value = self.get_nested_property(item, rule.field, MISSING)
        # Items without the field never match.
        if value is MISSING:
            return False

        operator = rule.operator
        if operator == "equals":
            return loose_equals(value, rule.value)
        if operator == "not_equals":
            return not loose_equals(value, rule.value)
        if operator == "contains":
            return _contains(value, rule.value) is True
        if operator == "not_contains":
            return _contains(value, rule.value) is not True
        if operator == "gt":
            return compare_loose(value, rule.value) > 0
        if operator == "lt":
            return compare_loose(value, rule.value) < 0
        if operator == "gte":
            return compare_loose(value, rule.value) >= 0
        if operator == "lte":
            return compare_loose(value, rule.value) <= 0
        if operator == "matches_regex":
            if not isinstance(value, str):
                return False
            return re.search(rule.value, value) is not None
        return False


class SortOperator(ItemsOperator[SortConfig]):
    type = "sort"
    category = "operators"
    description = "Sort items by a field in ascending or descending order"
    config_model = SortConfig

    async def execute(self, input_data: object, config: Any, context: ExecutionContext) -> object:
        items = self.require_items(input_data)
        settings = self.parse_config(config)
        if not items:
            return items

        present: list[tuple[object, Any]] = []
        missing: list[Any] = []
        for item in items:
            value = self.get_nested_property(item, settings.field)
            if value is None:
                missing.append(item)
            else:
                present.append((value, item))

        sign = -1 if settings.direction == "desc" else 1
        present.sort(key=cmp_to_key(lambda a, b: sign * compare_sort_values(a[0], b[0])))
        # Missing values go last in both directions.
        return [item for _, item in present] + missing


class TruncateOperator(ItemsOperator[CountConfig]):
    type = "truncate"
    category = "operators"
    description = "Keep only the first N items"
    config_model = CountConfig

    async def execute(self, input_data: object, config: Any, context: ExecutionContext) -> object:
        items = self.require_items(input_data, allow_none=True)
        settings = self.parse_config(config)
        return items[: settings.count]


class TailOperator(ItemsOperator[TailConfig]):
    type = "tail"
    category = "operators"
    description = "Keep only the last N items, or skip the first N"
    config_model = TailConfig

    async def execute(self, input_data: object, config: Any, context: ExecutionContext) -> object:
        items = self.require_items(input_data, allow_none=True)
        settings = self.parse_config(config)
        if settings.skip:
            return items[settings.count :]
        if settings.count == 0:
            return []
        return items[-settings.count :]


class UniqueOperator(ItemsOperator[UniqueConfig]):
    type = "unique"
    category = "operators"
    description = "Remove duplicate items based on a field"
    config_model = UniqueConfig

    async def execute(self, input_data: object, config: Any, context: ExecutionContext) -> object:
        items = self.require_items(input_data, allow_none=True)
        settings = self.parse_config(config)

        seen: set[str] = set()
        kept: list[Any] = []
        for item in items:
            key = _unique_key(self.get_nested_property(item, settings.field, MISSING))
            if key in seen:
                continue
            seen.add(key)
            kept.append(item)
        return kept


class RenameOperator(PerItemOperator[RenameConfig]):
    type = "rename"
    category = "operators"
    description = "Rename fields in items"
    config_model = RenameConfig

    def transform_item(self, item: Mapping[str, Any], settings: RenameConfig) -> object:
        result = dict(item)
        for mapping in settings.mappings:
            value = self.get_nested_property(item, mapping.source, MISSING)
            if value is MISSING:
                continue
            result = without_nested_value(result, mapping.source)
            result = with_nested_value(result, mapping.target, value)
        return result

    def get_output_schema(
        self,
        input_schema: Mapping[str, Any] | None = None,
        config: Any = None,
    ) -> dict[str, Any] | None:
        if input_schema is None:
            return None
        try:
            settings = self.parse_config(config)
        except OperatorError:
            return dict(input_schema)
        renames = {mapping.source: mapping.target for mapping in settings.mappings}
        if not renames:
            return dict(input_schema)
        schema = dict(input_schema)
        schema["fields"] = _rename_schema_fields(input_schema.get("fields") or [], renames)
        return schema


class PipeOutputOperator(Operator):
    type = "pipe-output"
    category = "operators"
    description = "Final output of the pipe"

    async def execute(self, input_data: object, config: Any, context: ExecutionContext) -> object:
        return input_data

    def validate(self, config: Any) -> ValidationResult:
        return ValidationResult(valid=True)

    def get_output_schema(
        self,
        input_schema: Mapping[str, Any] | None = None,
        config: Any = None,
    ) -> dict[str, Any] | None:
        return dict(input_schema) if input_schema is not None else None


def _contains(haystack: object, needle: object) -> bool | None:
    if isinstance(haystack, str) and isinstance(needle, str):
        return needle in haystack
    if isinstance(haystack, (list, tuple)):
        return needle in haystack
    return None


def _unique_key(value: object) -> str:
    if value is MISSING:
        return "__undefined__"
    if value is None:
        return "__null__"
    if isinstance(value, (Mapping, list, tuple)):
        return json.dumps(value, sort_keys=True, default=str)
    return str(value)


def _as_bool(value: object) -> object:
    if value == "true":
        return True
    if value == "false":
        return False
    return value


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _as_number(value: object) -> float | None:
    if _is_number(value):
        return float(value)  # type: ignore[arg-type]
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _strict_number(value: str) -> float | None:
    text = value.strip()
    if not text or not NUMBER_PATTERN.match(text):
        return None
    return float(text)


def _timestamp(value: datetime) -> float:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


def _sign(value: float) -> int:
    if value > 0:
        return 1
    if value < 0:
        return -1
    return 0


def _sign_cmp(left: str, right: str) -> int:
    return (left > right) - (left < right)


def _rename_schema_fields(fields: list[Mapping[str, Any]], renames: Mapping[str, str]) -> list[dict[str, Any]]:
    renamed: list[dict[str, Any]] = []
    for field in fields:
        entry = dict(field)
        target = renames.get(str(field.get("path", "")))
        if target is not None:
            entry["name"] = target.rsplit(".", 1)[-1]
            entry["path"] = target
        if field.get("children"):
            entry["children"] = _rename_schema_fields(field["children"], renames)
        renamed.append(entry)
    return renamed
