"""Decoding of Pkl's binary (msgpack) value encoding into Python values."""

from __future__ import annotations

import collections.abc
import dataclasses
import enum
import functools
import logging
import types
import typing
from typing import Any

import msgpack

from .errors import InternalError, PklError
from .values import (
    Class,
    DataSize,
    Duration,
    IntSeq,
    Object,
    Pair,
    Regex,
    TypeAlias,
    struct_fields,
)

_log = logging.getLogger(__name__)

_NONE_TYPE = type(None)
_LIST_TYPES = (list, collections.abc.Sequence)
_DICT_TYPES = (dict, collections.abc.Mapping)
_SET_TYPES = (set, frozenset, collections.abc.Set)


class ObjectCode(enum.IntEnum):
    """Type codes that lead every Pkl object on the wire."""

    OBJECT = 0x1
    MAP = 0x2
    MAPPING = 0x3
    LIST = 0x4
    LISTING = 0x5
    SET = 0x6
    DURATION = 0x7
    DATA_SIZE = 0x8
    PAIR = 0x9
    INT_SEQ = 0xA
    REGEX = 0xB
    CLASS = 0xC
    TYPE_ALIAS = 0xD
    OBJECT_MEMBER_PROPERTY = 0x10
    OBJECT_MEMBER_ENTRY = 0x11
    OBJECT_MEMBER_ELEMENT = 0x12


def _type_name(typ: Any) -> str:
    return getattr(typ, "__qualname__", None) or repr(typ)


@functools.lru_cache(maxsize=None)
def _type_hints(typ: type) -> dict[str, Any]:
    """Field types of a dataclass; annotations left as text decode as ``Any``."""
    return {
        f.name: (Any if isinstance(f.type, str) else f.type)
        for f in dataclasses.fields(typ)
    }


def _is_union(typ: Any) -> bool:
    origin = typing.get_origin(typ)
    return origin is typing.Union or origin is types.UnionType


def _zero_value(typ: Any) -> Any:
    """The value a field takes when Pkl supplies none for it."""
    if _is_union(typ) or typ is Any:
        return None
    origin = typing.get_origin(typ)
    container = origin if origin is not None else typ
    if container is bool:
        return False
    if container is int:
        return 0
    if container is float:
        return 0.0
    if container is str:
        return ""
    if container in _LIST_TYPES:
        return []
    if container in _DICT_TYPES:
        return {}
    if container is frozenset:
        return frozenset()
    if container in _SET_TYPES:
        return set()
    return None


def _slot(obj: tuple, index: int) -> Any:
    try:
        return obj[index]
    except IndexError:
        raise PklError(
            f"malformed Pkl object: expected at least {index + 1} slots but got {len(obj)}"
        ) from None


def _items(value: Any) -> tuple:
    if value is None:
        return ()
    if not isinstance(value, tuple):
        raise PklError(f"expected an array but got {type(value).__name__}")
    return value


class Decoder:
    """Decodes one msgpack-encoded Pkl value according to an expected Python type."""

    def __init__(self, data: bytes, schemas: typing.Mapping[str, type] | None = None) -> None:
        try:
            self._root = msgpack.unpackb(
                data, raw=False, use_list=False, strict_map_key=False
            )
        except (ValueError, TypeError, msgpack.UnpackException) as exc:
            raise PklError(f"malformed msgpack data: {exc}") from exc
        self._schemas = dict(schemas or {})

    def decode(self, typ: Any) -> Any:
        """Decode the value into ``typ``."""
        return self._decode(self._root, typ)

    # -- dispatch -------------------------------------------------------

    def _decode(self, value: Any, typ: Any) -> Any:
        if typ is Any or typ is object:
            return self._decode_interface(value)
        if _is_union(typ):
            args = typing.get_args(typ)
            non_none = tuple(a for a in args if a is not _NONE_TYPE)
            if value is None and len(non_none) < len(args):
                return None
            if len(non_none) == 1:
                return self._decode(value, non_none[0])
            return self._decode_interface(value)

        origin = typing.get_origin(typ)
        container = origin if origin is not None else typ
        args = typing.get_args(typ)
        if container in _LIST_TYPES:
            return self._decode_slice(value, args[0] if args else Any)
        if container in _DICT_TYPES:
            key_type, value_type = args if len(args) == 2 else (Any, Any)
            return self._decode_map(value, key_type, value_type)
        if container in _SET_TYPES:
            factory = frozenset if container is frozenset else set
            return self._decode_set_type(value, args[0] if args else Any, factory)

        if isinstance(typ, type):
            if issubclass(typ, enum.Enum):
                return self._unmarshal_enum(value, typ)
            if typ is bool:
                return self._bool(value)
            if typ is str:
                return self._string(value)
            if typ is int:
                return self._int(value)
            if typ is float:
                return self._float(value)
            if dataclasses.is_dataclass(typ):
                return self._decode_struct(value, typ)
        raise InternalError(
            f"encountered unexpected Python type while decoding: {_type_name(typ)}"
        )

    # -- primitives -----------------------------------------------------

    @staticmethod
    def _mismatch(value: Any, expected: str) -> PklError:
        return PklError(f"cannot decode {type(value).__name__} into {expected}")

    def _bool(self, value: Any) -> bool:
        if not isinstance(value, bool):
            raise self._mismatch(value, "bool")
        return value

    def _string(self, value: Any) -> str:
        if isinstance(value, str):
            return value
        if isinstance(value, bytes):
            return value.decode("utf-8")
        raise self._mismatch(value, "str")

    def _int(self, value: Any) -> int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise self._mismatch(value, "int")
        return value

    def _float(self, value: Any) -> float:
        # Pkl numbers may arrive either as integers or as floats.
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise self._mismatch(value, "float")
        return float(value)

    def _unmarshal_enum(self, value: Any, typ: type[enum.Enum]) -> enum.Enum:
        if value is None:
            text = ""
        elif isinstance(value, (str, bytes)):
            text = self._string(value)
        else:
            raise self._mismatch(value, _type_name(typ))
        try:
            return typ(text)
        except ValueError:
            raise PklError(f'illegal: "{text}" is not a valid {typ.__name__}') from None

    # -- objects --------------------------------------------------------

    def _preamble(self, value: Any) -> tuple[int, int]:
        """Length and type code of a Pkl object, which is packed as an array."""
        if not isinstance(value, tuple) or not value:
            raise PklError(f"expected a Pkl object but got {type(value).__name__}")
        return len(value), self._int(value[0])

    def _decode_interface(self, value: Any) -> Any:
        if isinstance(value, dict):
            return self._map_entries(value, Any, Any)
        if isinstance(value, tuple):
            return self._decode_pkl_object(value)
        return value

    def _decode_pkl_object(self, value: tuple) -> Any:
        _, code = self._preamble(value)
        if code == ObjectCode.OBJECT:
            return self._decode_object(value, Any)
        if code in (ObjectCode.MAP, ObjectCode.MAPPING):
            return self._map_entries(_slot(value, 1), Any, Any)
        if code in (ObjectCode.LIST, ObjectCode.LISTING):
            return self._slice_items(_slot(value, 1), Any)
        if code == ObjectCode.SET:
            return {self._decode(item, Any) for item in _items(_slot(value, 1))}
        if code == ObjectCode.DATA_SIZE:
            return self._decode_data_size(value)
        if code == ObjectCode.DURATION:
            return self._decode_duration(value)
        if code == ObjectCode.INT_SEQ:
            return self._decode_int_seq(value)
        if code == ObjectCode.REGEX:
            return self._decode_regex(value)
        if code == ObjectCode.CLASS:
            return Class()
        if code == ObjectCode.TYPE_ALIAS:
            return TypeAlias()
        raise InternalError(f"encountered unknown object code: {code}")

    def _decode_struct(self, value: Any, typ: type) -> Any:
        _, code = self._preamble(value)
        if code == ObjectCode.OBJECT:
            result = self._decode_object(value, typ)
        elif code == ObjectCode.DATA_SIZE:
            result = self._decode_data_size(value)
        elif code == ObjectCode.DURATION:
            result = self._decode_duration(value)
        elif code == ObjectCode.PAIR:
            result = self._decode_pair(value, typ)
        elif code == ObjectCode.INT_SEQ:
            result = self._decode_int_seq(value)
        elif code == ObjectCode.REGEX:
            result = self._decode_regex(value)
        elif code == ObjectCode.CLASS:
            result = Class()
        elif code == ObjectCode.TYPE_ALIAS:
            result = TypeAlias()
        else:
            raise PklError(f"code {code:x} cannot be decoded into a struct")
        if not isinstance(result, typ):
            raise PklError(
                f"cannot decode Pkl value of type `{type(result).__qualname__}` "
                f"into Python type `{_type_name(typ)}`"
            )
        return result

    def _decode_object(self, value: tuple, typ: Any) -> Any:
        name = self._string(_slot(value, 1))
        module_uri = self._string(_slot(value, 2))
        members = _items(value[3] if len(value) > 3 else None)
        is_object_type = isinstance(typ, type) and issubclass(typ, Object)
        if (module_uri == "pkl:base" and name == "Dynamic") or is_object_type:
            return self._decode_object_generic(module_uri, name, members)
        return self._decode_typed(name, typ, members)

    def _decode_object_generic(self, module_uri: str, name: str, members: tuple) -> Object:
        obj = Object(module_uri=module_uri, name=name)
        for member in members:
            member = _items(member)
            code = self._int(_slot(member, 0))
            if code == ObjectCode.OBJECT_MEMBER_PROPERTY:
                prop = self._string(_slot(member, 1))
                obj.properties[prop] = self._decode_interface(_slot(member, 2))
            elif code == ObjectCode.OBJECT_MEMBER_ENTRY:
                key = self._decode_interface(_slot(member, 1))
                obj.entries[key] = self._decode_interface(_slot(member, 2))
            elif code == ObjectCode.OBJECT_MEMBER_ELEMENT:
                self._int(_slot(member, 1))
                obj.elements.append(self._decode_interface(_slot(member, 2)))
        return obj

    def _decode_typed(self, name: str, typ: Any, members: tuple) -> Any:
        if name in self._schemas:
            # A registered schema wins: the Pkl value may be a subtype of typ.
            typ = self._schemas[name]
        elif not (isinstance(typ, type) and dataclasses.is_dataclass(typ)):
            raise PklError(
                f"cannot decode Pkl value of type `{name}` into Python type "
                f"`{_type_name(typ)}`. Register a schema for this class"
            )
        fields = struct_fields(typ)
        hints = _type_hints(typ)
        decoded: dict[str, Any] = {}
        for member in members:
            member = _items(member)
            code = self._int(_slot(member, 0))
            if code != ObjectCode.OBJECT_MEMBER_PROPERTY:
                raise PklError(
                    f"expected code {int(ObjectCode.OBJECT_MEMBER_PROPERTY)} but found {code}"
                )
            prop = self._string(_slot(member, 1))
            f = fields.get(prop)
            if f is None:
                _log.warning(
                    "Cannot find field on `%s` matching Pkl property `%s`. Ensure the "
                    "Python classes are up to date with the Pkl classes.",
                    _type_name(typ),
                    prop,
                )
                continue
            raw = _slot(member, 2)
            if raw is None:
                continue
            decoded[f.name] = self._decode(raw, hints.get(f.name, Any))
        return self._build(typ, decoded, hints)

    @staticmethod
    def _build(typ: type, decoded: dict[str, Any], hints: dict[str, Any]) -> Any:
        kwargs: dict[str, Any] = {}
        late: dict[str, Any] = {}
        for f in dataclasses.fields(typ):
            if f.name in decoded:
                (kwargs if f.init else late)[f.name] = decoded[f.name]
            elif (
                f.init
                and f.default is dataclasses.MISSING
                and f.default_factory is dataclasses.MISSING
            ):
                kwargs[f.name] = _zero_value(hints.get(f.name, Any))
        try:
            obj = typ(**kwargs)
        except (TypeError, ValueError) as exc:
            raise PklError(f"cannot construct `{_type_name(typ)}`: {exc}") from exc
        for name, value in late.items():
            object.__setattr__(obj, name, value)
        return obj

    def _decode_duration(self, value: tuple) -> Duration:
        amount = self._float(_slot(value, 1))
        unit = self._string(_slot(value, 2))
        try:
            return Duration(value=amount, unit=unit)
        except ValueError as exc:
            raise PklError(str(exc)) from exc

    def _decode_data_size(self, value: tuple) -> DataSize:
        amount = self._float(_slot(value, 1))
        unit = self._string(_slot(value, 2))
        try:
            return DataSize(value=amount, unit=unit)
        except ValueError as exc:
            raise PklError(str(exc)) from exc

    def _decode_pair(self, value: tuple, typ: type) -> Any:
        names = {f.name for f in dataclasses.fields(typ)}
        hints = _type_hints(typ)
        for needed in ("first", "second"):
            if needed not in names:
                raise InternalError(f"unable to find field `{needed}` on {_type_name(typ)}")
        first = self._decode(_slot(value, 1), hints.get("first", Any))
        second = self._decode(_slot(value, 2), hints.get("second", Any))
        return self._build(typ, {"first": first, "second": second}, hints)

    def _decode_int_seq(self, value: tuple) -> IntSeq:
        return IntSeq(
            start=self._int(_slot(value, 1)),
            end=self._int(_slot(value, 2)),
            step=self._int(_slot(value, 3)),
        )

    def _decode_regex(self, value: tuple) -> Regex:
        return Regex(pattern=self._string(_slot(value, 1)))

    # -- collections ----------------------------------------------------

    def _decode_slice(self, value: Any, elem_type: Any) -> list:
        length, code = self._preamble(value)
        if length != 2:
            raise PklError(f"expected array length 2 but got {length}")
        if code not in (ObjectCode.LIST, ObjectCode.LISTING):
            raise PklError(
                f"invalid code for slices: {code}. Expected "
                f"{int(ObjectCode.LIST)} or {int(ObjectCode.LISTING)}"
            )
        return self._slice_items(value[1], elem_type)

    def _slice_items(self, items: Any, elem_type: Any) -> list:
        return [self._decode(item, elem_type) for item in _items(items)]

    def _decode_map(self, value: Any, key_type: Any, value_type: Any) -> dict:
        _, code = self._preamble(value)
        if code == ObjectCode.SET:
            return dict.fromkeys(
                self._decode(item, key_type) for item in _items(_slot(value, 1))
            )
        if code not in (ObjectCode.MAP, ObjectCode.MAPPING):
            raise PklError(f"invalid code for maps: {code}")
        return self._map_entries(_slot(value, 1), key_type, value_type)

    def _map_entries(self, mapping: Any, key_type: Any, value_type: Any) -> dict:
        if mapping is None:
            return {}
        if not isinstance(mapping, dict):
            raise PklError(f"expected a map but got {type(mapping).__name__}")
        return {
            self._decode(k, key_type): self._decode(v, value_type)
            for k, v in mapping.items()
        }

    def _decode_set_type(self, value: Any, elem_type: Any, factory: type) -> Any:
        _, code = self._preamble(value)
        if code != ObjectCode.SET:
            raise PklError(f"invalid code for sets: {code}")
        return factory(self._decode(item, elem_type) for item in _items(_slot(value, 1)))


def decode(data: bytes, typ: Any, schemas: typing.Mapping[str, type] | None = None) -> Any:
    """Decode msgpack-encoded Pkl ``data`` into ``typ``.

    ``schemas`` maps Pkl class names to the Python dataclasses that represent them.
    """
    return Decoder(data, schemas).decode(typ)