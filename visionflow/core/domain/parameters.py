"""Operator parameters: typed values with defaults, bounds and option sets."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from visionflow.core.exceptions import ValidationError

ParameterType = Literal["int", "float", "bool", "string", "enum", "point", "rectangle", "any"]

_NUMERIC_TYPES = frozenset({"int", "float"})


class ParameterSpec(BaseModel):
    """A named operator parameter.

    ``value`` is what the graph author set; ``default`` is used when no value
    was set. Numeric parameters may declare ``min_value``/``max_value`` and any
    parameter may restrict itself to ``options``.

    Examples
    --------
    >>> p = ParameterSpec(name="threshold", data_type="int", default=128, max_value=255)
    >>> p.effective_value
    128
    >>> p.set_value(200)
    >>> p.effective_value
    200
    """

    model_config = ConfigDict(validate_assignment=False, arbitrary_types_allowed=True)

    name: str
    data_type: ParameterType = "any"
    default: Any = None
    value: Any = None
    min_value: float | None = None
    max_value: float | None = None
    options: tuple[Any, ...] | None = None
    required: bool = False
    display_name: str = ""
    description: str = ""
    extra: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_declaration(self) -> "ParameterSpec":
        if (
            self.min_value is not None
            and self.max_value is not None
            and self.min_value > self.max_value
        ):
            raise ValueError(
                f"parameter '{self.name}': min_value {self.min_value} > max_value {self.max_value}"
            )
        if self.default is not None and (problems := self._problems(self.default)):
            raise ValueError(f"parameter '{self.name}' default: {problems[0]}")
        if not self.display_name:
            self.display_name = self.name
        return self

    @property
    def effective_value(self) -> Any:
        """The value the executor should read."""
        return self.value if self.value is not None else self.default

    def set_value(self, value: Any) -> None:
        """Set the author-supplied value.

        Raises
        ------
        ValidationError
            If the value violates the declared type, bounds or options.
        """
        if value is not None and (problems := self._problems(value)):
            raise ValidationError(self.name, problems[0], value)
        self.value = value

    def reset(self) -> None:
        self.value = None

    def violations(self) -> list[str]:
        """Problems with the current effective value (empty when valid)."""
        current = self.effective_value
        if current is None:
            return ["required parameter has no value"] if self.required else []
        return self._problems(current)

    def _problems(self, value: Any) -> list[str]:
        problems: list[str] = []
        if self.data_type in _NUMERIC_TYPES:
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                return [f"expected a number, got {type(value).__name__}"]
            if self.data_type == "int" and isinstance(value, float) and not value.is_integer():
                problems.append("expected an integer")
            if self.min_value is not None and value < self.min_value:
                problems.append(f"must be >= {self.min_value}")
            if self.max_value is not None and value > self.max_value:
                problems.append(f"must be <= {self.max_value}")
        elif self.data_type == "bool" and not isinstance(value, bool):
            problems.append(f"expected a boolean, got {type(value).__name__}")
        elif self.data_type == "string" and not isinstance(value, str):
            problems.append(f"expected a string, got {type(value).__name__}")

        if self.options is not None and value not in self.options:
            problems.append(f"must be one of {list(self.options)}")
        return problems
