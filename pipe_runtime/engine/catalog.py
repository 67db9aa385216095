from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, ClassVar, Literal

from pipe_runtime.engine.models import ExecutionContext


OperatorCategory = Literal["sources", "user-inputs", "operators", "string", "url"]
SOURCE_CATEGORIES = frozenset({"sources", "user-inputs"})


@dataclass(slots=True)
class ValidationResult:
    valid: bool
    error: str | None = None


class Operator(ABC):
    """A typed processing step a pipe node refers to by ``type``."""

    type: ClassVar[str] = ""
    category: ClassVar[OperatorCategory] = "operators"
    description: ClassVar[str] = ""

    @abstractmethod
    async def execute(self, input_data: object, config: Any, context: ExecutionContext) -> object:
        ...

    @abstractmethod
    def validate(self, config: Any) -> ValidationResult:
        ...

    def get_output_schema(
        self,
        input_schema: Mapping[str, Any] | None = None,
        config: Any = None,
    ) -> dict[str, Any] | None:
        return None

    @staticmethod
    def get_nested_property(item: object, path: str, default: object = None) -> object:
        """Resolve a dotted ``path`` (``a.b.c``) inside nested mappings.

        ``default`` is returned when any segment is missing; an explicit ``None``
        stored at the leaf is returned as ``None``.
        """
        current = item
        for part in path.split("."):
            if not isinstance(current, Mapping) or part not in current:
                return default
            current = current[part]
        return current

    @staticmethod
    def is_sequence(value: object) -> bool:
        return isinstance(value, (list, tuple))


class OperatorCatalog:
    """Registry mapping operator type strings to instances."""

    def __init__(self) -> None:
        self._operators: dict[str, Operator] = {}
        self._aliases: dict[str, str] = {}

    def register(self, operator: Operator) -> None:
        if not operator.type:
            raise ValueError(f"{operator.__class__.__name__} does not declare a type.")
        if operator.type in self._operators or operator.type in self._aliases:
            raise ValueError(f"Operator type '{operator.type}' is already registered.")
        self._operators[operator.type] = operator

    def register_alias(self, alias: str, target_type: str) -> None:
        if target_type not in self._operators:
            raise ValueError(f"Cannot alias '{alias}' to unknown operator type '{target_type}'.")
        if alias in self._operators or alias in self._aliases:
            raise ValueError(f"Operator type '{alias}' is already registered.")
        self._aliases[alias] = target_type

    def get(self, operator_type: str) -> Operator | None:
        resolved = self._aliases.get(operator_type, operator_type)
        return self._operators.get(resolved)

    def has(self, operator_type: str) -> bool:
        return self.get(operator_type) is not None

    def list_types(self) -> list[str]:
        return list(self._operators)

    def list_aliases(self) -> dict[str, str]:
        return dict(self._aliases)

    def count(self) -> int:
        return len(self._operators)

    def clear(self) -> None:
        self._operators.clear()
        self._aliases.clear()

    def category_of(self, operator_type: str) -> OperatorCategory | None:
        operator = self.get(operator_type)
        if operator is None:
            return None
        return operator.category

    def __contains__(self, operator_type: object) -> bool:
        return isinstance(operator_type, str) and self.has(operator_type)

    def __len__(self) -> int:
        return self.count()
