"""Python counterparts of Pkl runtime values, and field mapping for typed decoding."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Any

STRUCT_TAG = "pkl"
"""Metadata key holding the Pkl property name of a dataclass field."""

_DURATION_UNITS = frozenset({"ns", "us", "ms", "s", "min", "h", "d"})
_DATA_SIZE_UNITS = frozenset(
    {"b", "kb", "kib", "mb", "mib", "gb", "gib", "tb", "tib", "pb", "pib"}
)


@dataclass
class Object:
    """A generic Pkl object: its properties, entries and elements."""

    module_uri: str = ""
    name: str = ""
    properties: dict[str, Any] = field(default_factory=dict)
    entries: dict[Any, Any] = field(default_factory=dict)
    elements: list[Any] = field(default_factory=list)


@dataclass(frozen=True)
class Duration:
    """A Pkl Duration: a value together with its unit."""

    value: float
    unit: str

    def __post_init__(self) -> None:
        if self.unit not in _DURATION_UNITS:
            raise ValueError(f"invalid duration unit: {self.unit!r}")


@dataclass(frozen=True)
class DataSize:
    """A Pkl DataSize: a value together with its unit."""

    value: float
    unit: str

    def __post_init__(self) -> None:
        if self.unit not in _DATA_SIZE_UNITS:
            raise ValueError(f"invalid data size unit: {self.unit!r}")


@dataclass(frozen=True)
class IntSeq:
    """A Pkl IntSeq: integers from start to end, stepping by step."""

    start: int
    end: int
    step: int


@dataclass(frozen=True)
class Regex:
    """A Pkl Regex, kept as its pattern."""

    pattern: str


@dataclass
class Pair:
    """A Pkl Pair."""

    first: Any = None
    second: Any = None


@dataclass(frozen=True)
class Class:
    """A Pkl class value; carries no data."""


@dataclass(frozen=True)
class TypeAlias:
    """A Pkl type alias value; carries no data."""


def pkl_field(name: str, **kwargs: Any) -> Any:
    """A dataclass field bound to the Pkl property ``name``.

    ``name`` of ``"-"`` excludes the field from decoding.
    """
    metadata = dict(kwargs.pop("metadata", None) or {})
    metadata[STRUCT_TAG] = name
    return field(metadata=metadata, **kwargs)


def struct_fields(cls: type) -> dict[str, dataclasses.Field]:
    """Map Pkl property names to the dataclass fields of ``cls``.

    Inherited fields are included; fields tagged ``"-"`` are left out.
    """
    if not (isinstance(cls, type) and dataclasses.is_dataclass(cls)):
        raise TypeError(f"{cls!r} is not a dataclass type")
    result: dict[str, dataclasses.Field] = {}
    for f in dataclasses.fields(cls):
        property_name = f.metadata.get(STRUCT_TAG, f.name)
        if property_name == "-":
            continue
        result[property_name] = f
    return result