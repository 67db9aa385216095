from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any, Literal

from pydantic import Field, model_validator

from pipe_runtime.operators.base import MISSING, OperatorError, OperatorConfig, PerItemOperator, with_nested_value
from pipe_runtime.operators.transforms import MAX_REGEX_LENGTH


# "g" only changes how many matches are used; "u" is implied by Python's str patterns.
REGEX_FLAGS = {
    "i": re.IGNORECASE,
    "m": re.MULTILINE,
    "s": re.DOTALL,
    "g": 0,
    "u": 0,
}
REPLACEMENT_TOKEN = re.compile(r"\$(\$|&|\d{1,2}|<[^>]+>)")


class RegexConfig(OperatorConfig):
    field: str = Field(min_length=1)
    pattern: str = Field(min_length=1, max_length=MAX_REGEX_LENGTH)
    mode: Literal["extract", "replace"]
    replacement: str | None = None
    flags: str = ""
    group: int | None = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _check(self) -> RegexConfig:
        if self.mode == "replace" and self.replacement is None:
            raise ValueError("Replacement is required for replace mode")
        compile_pattern(self.pattern, self.flags)
        return self

    @property
    def global_match(self) -> bool:
        return "g" in self.flags


class StringReplaceConfig(OperatorConfig):
    field: str = Field(min_length=1)
    search: str = Field(min_length=1)
    replace: str
    all: bool = True


class SubstringConfig(OperatorConfig):
    field: str = Field(min_length=1)
    start: int = Field(ge=0)
    end: int | None = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _check_range(self) -> SubstringConfig:
        if self.end is not None and self.end < self.start:
            raise ValueError("End must be greater than or equal to start")
        return self


def compile_pattern(pattern: str, flags: str = "") -> re.Pattern[str]:
    """Compile a pattern written with JavaScript-style flag letters (``gimsu``)."""
    value = 0
    for letter in flags:
        if letter not in REGEX_FLAGS:
            raise ValueError(f"Unsupported regex flag: {letter}")
        value |= REGEX_FLAGS[letter]
    try:
        return re.compile(pattern, value)
    except re.error as exc:
        raise ValueError(f"Invalid regex pattern: {exc}") from exc


def expand_replacement(template: str, match: re.Match[str]) -> str:
    """Expand ``$&``, ``$1`` and ``$<name>`` references the way the editor writes them."""

    def token(found: re.Match[str]) -> str:
        ref = found.group(1)
        if ref == "$":
            return "$"
        if ref == "&":
            return match.group(0)
        if ref.startswith("<"):
            name = ref[1:-1]
            if name in match.re.groupindex:
                return match.group(name) or ""
            return found.group(0)
        index = int(ref)
        if 0 < index <= match.re.groups:
            return match.group(index) or ""
        return found.group(0)

    return REPLACEMENT_TOKEN.sub(token, template)


class RegexOperator(PerItemOperator[RegexConfig]):
    type = "regex"
    category = "string"
    description = "Apply regex pattern to extract or replace content"
    config_model = RegexConfig

    def transform_item(self, item: Mapping[str, Any], settings: RegexConfig) -> object:
        value = self.get_nested_property(item, settings.field, MISSING)
        if not isinstance(value, str):
            return item

        try:
            pattern = compile_pattern(settings.pattern, settings.flags)
        except ValueError as exc:
            raise OperatorError(str(exc)) from exc

        if settings.mode == "extract":
            return with_nested_value(item, settings.field, self._extract(value, pattern, settings))

        count = 0 if settings.global_match else 1
        replacement = settings.replacement or ""
        replaced = pattern.sub(lambda match: expand_replacement(replacement, match), value, count=count)
        return with_nested_value(item, settings.field, replaced)

    def _extract(self, value: str, pattern: re.Pattern[str], settings: RegexConfig) -> str | None:
        index = settings.group or 0
        if settings.global_match:
            # With "g" the group index picks among the full matches.
            matches = [match.group(0) for match in pattern.finditer(value)]
            return matches[index] if index < len(matches) else None

        match = pattern.search(value)
        if match is None or index > pattern.groups:
            return None
        return match.group(index)


class StringReplaceOperator(PerItemOperator[StringReplaceConfig]):
    type = "string-replace"
    category = "string"
    description = "Replace text in a field"
    config_model = StringReplaceConfig

    def transform_item(self, item: Mapping[str, Any], settings: StringReplaceConfig) -> object:
        value = self.get_nested_property(item, settings.field, MISSING)
        if not isinstance(value, str):
            return item
        count = -1 if settings.all else 1
        return with_nested_value(item, settings.field, value.replace(settings.search, settings.replace, count))


class SubstringOperator(PerItemOperator[SubstringConfig]):
    type = "substring"
    category = "string"
    description = "Extract portion of a string by indices"
    config_model = SubstringConfig

    def transform_item(self, item: Mapping[str, Any], settings: SubstringConfig) -> object:
        value = self.get_nested_property(item, settings.field, MISSING)
        if not isinstance(value, str):
            return item
        return with_nested_value(item, settings.field, value[settings.start : settings.end])
