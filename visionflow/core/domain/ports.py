"""Typed ports and the tagged values that travel between them."""

import sys
import uuid
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class PortKind(StrEnum):
    """Declared data kind of a port."""

    IMAGE = "image"
    INTEGER = "integer"
    FLOAT = "float"
    BOOLEAN = "boolean"
    STRING = "string"
    POINT = "point"
    RECTANGLE = "rectangle"
    CONTOUR = "contour"
    ANY = "any"

    @property
    def is_scalar(self) -> bool:
        return self in (PortKind.INTEGER, PortKind.FLOAT)

    @property
    def is_geometry(self) -> bool:
        return self in (PortKind.POINT, PortKind.RECTANGLE, PortKind.CONTOUR)


class PortDirection(StrEnum):
    """Whether a port consumes or produces values."""

    INPUT = "input"
    OUTPUT = "output"


def kinds_compatible(source: PortKind, target: PortKind) -> bool:
    """Return True if a value of ``source`` kind may flow into ``target``.

    Examples
    --------
    >>> kinds_compatible(PortKind.IMAGE, PortKind.IMAGE)
    True
    >>> kinds_compatible(PortKind.IMAGE, PortKind.ANY)
    True
    >>> kinds_compatible(PortKind.IMAGE, PortKind.STRING)
    False
    """
    return source == target or PortKind.ANY in (source, target)


def _new_port_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True, slots=True)
class Port:
    """A named, typed connection point on a node.

    ``required`` and ``default`` only matter for input ports. The ``id`` is
    stable for the lifetime of the port and is what connections reference.
    """

    name: str
    kind: PortKind = PortKind.ANY
    direction: PortDirection = PortDirection.INPUT
    required: bool = True
    default: Any = None
    id: str = field(default_factory=_new_port_id)

    def __post_init__(self) -> None:
        object.__setattr__(self, "name", sys.intern(self.name))
        object.__setattr__(self, "kind", PortKind(self.kind))
        object.__setattr__(self, "direction", PortDirection(self.direction))
        if self.direction == PortDirection.OUTPUT:
            object.__setattr__(self, "required", False)

    @property
    def has_default(self) -> bool:
        return self.default is not None

    def __repr__(self) -> str:
        flag = "" if not self.required else ", required"
        return f"Port('{self.name}', {self.kind.value}, {self.direction.value}{flag})"


@dataclass(frozen=True, slots=True)
class PortValue:
    """A value tagged with its data kind.

    The engine reasons about compatibility through ``kind`` rather than by
    inspecting ``data``. A pooled image that has been handed back to the
    buffer pool is represented by ``released=True`` with ``data=None``; the
    original shape is kept in ``meta``.
    """

    kind: PortKind
    data: Any
    released: bool = False
    meta: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def of(cls, kind: PortKind, data: Any) -> "PortValue":
        """Wrap ``data`` as ``kind`` unless it is already a PortValue."""
        if isinstance(data, PortValue):
            return data
        return cls(PortKind(kind), data)

    @classmethod
    def image(cls, data: Any) -> "PortValue":
        return cls(PortKind.IMAGE, data)

    @classmethod
    def scalar(cls, data: int | float) -> "PortValue":
        is_int = isinstance(data, int) and not isinstance(data, bool)
        kind = PortKind.INTEGER if is_int else PortKind.FLOAT
        return cls(kind, data)

    @classmethod
    def boolean(cls, data: bool) -> "PortValue":
        return cls(PortKind.BOOLEAN, bool(data))

    @classmethod
    def string(cls, data: str) -> "PortValue":
        return cls(PortKind.STRING, str(data))

    @classmethod
    def geometry(cls, kind: PortKind, data: Any) -> "PortValue":
        if not PortKind(kind).is_geometry:
            raise ValueError(f"{kind!r} is not a geometric port kind")
        return cls(PortKind(kind), data)

    @classmethod
    def released_image(cls, shape: Any) -> "PortValue":
        """Marker for an image whose pooled buffer has been returned."""
        return cls(PortKind.IMAGE, None, released=True, meta={"shape": shape})

    def __repr__(self) -> str:
        if self.released:
            return f"PortValue({self.kind.value}, released)"
        shape = getattr(self.data, "shape", None)
        body = f"shape={tuple(shape)}" if shape is not None else repr(self.data)
        return f"PortValue({self.kind.value}, {body})"
