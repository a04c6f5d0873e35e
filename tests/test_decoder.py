import dataclasses
import enum
import logging
from typing import Any, Optional

import msgpack
import pytest

from pklbridge.decoder import Decoder, ObjectCode, decode
from pklbridge.errors import InternalError, PklError
from pklbridge.values import (
    Class,
    DataSize,
    Duration,
    IntSeq,
    Object,
    Pair,
    Regex,
    TypeAlias,
    pkl_field,
)


@dataclasses.dataclass
class Person:
    name: str = pkl_field("name")
    age: int = pkl_field("age")
    nickname: Optional[str] = pkl_field("nickname", default=None)


@dataclasses.dataclass
class Animal:
    name: str = pkl_field("name")


@dataclasses.dataclass
class Dog(Animal):
    barks: bool = pkl_field("barks", default=False)


@dataclasses.dataclass
class Holder:
    people: list[Person] = pkl_field("people")


class Color(enum.Enum):
    RED = "red"
    GREEN = "green"


PROP = int(ObjectCode.OBJECT_MEMBER_PROPERTY)


def pack(value):
    return msgpack.packb(value, use_bin_type=True)


def person_data(*members):
    return pack([1, "Person", "file:///person.pkl", list(members)])


def test_primitives():
    assert decode(pack("hi"), str) == "hi"
    assert decode(pack(42), int) == 42
    assert decode(pack(True), bool) is True
    result = decode(pack(5), float)
    assert result == 5.0 and isinstance(result, float)


def test_primitive_mismatch():
    with pytest.raises(PklError):
        decode(pack("x"), int)
    with pytest.raises(PklError):
        decode(pack(1), bool)


@pytest.mark.parametrize("code", [4, 5])
def test_list(code):
    assert decode(pack([code, [1, 2, 3]]), list[int]) == [1, 2, 3]


def test_list_wrong_length():
    with pytest.raises(PklError, match="expected array length 2 but got 3"):
        decode(pack([4, [1], 9]), list[int])


def test_list_wrong_code():
    with pytest.raises(PklError, match=r"invalid code for slices: 2\. Expected 4 or 5"):
        decode(pack([2, {}]), list[int])


@pytest.mark.parametrize("code", [2, 3])
def test_map(code):
    assert decode(pack([code, {"a": 1}]), dict[str, int]) == {"a": 1}


def test_set_into_dict_and_set():
    data = pack([6, ["a", "b"]])
    assert decode(data, dict[str, Any]) == {"a": None, "b": None}
    assert decode(data, set[str]) == {"a", "b"}


def test_invalid_map_code():
    with pytest.raises(PklError, match="invalid code for maps: 4"):
        decode(pack([4, []]), dict[str, int])


def test_optional():
    assert decode(pack(None), Optional[int]) is None
    assert decode(pack(3), Optional[int]) == 3


def test_dynamic_object():
    data = pack(
        [1, "Dynamic", "pkl:base", [[0x10, "foo", 1], [0x11, "k", "v"], [0x12, 0, "e"]]]
    )
    assert decode(data, Any) == Object(
        module_uri="pkl:base",
        name="Dynamic",
        properties={"foo": 1},
        entries={"k": "v"},
        elements=["e"],
    )


def test_interface_values():
    assert decode(pack([4, [1, "a"]]), Any) == [1, "a"]
    assert decode(pack([2, {"x": [4, [True]]}]), Any) == {"x": [True]}
    assert decode(pack([6, [1, 2]]), Any) == {1, 2}
    assert decode(pack([7, 5, "s"]), Any) == Duration(5.0, "s")
    assert decode(pack([8, 1.5, "mb"]), Any) == DataSize(1.5, "mb")
    assert decode(pack([10, 0, 5, 1]), Any) == IntSeq(0, 5, 1)
    assert decode(pack([11, "a+"]), Any) == Regex("a+")
    assert decode(pack([12]), Any) == Class()
    assert decode(pack([13]), Any) == TypeAlias()
    assert decode(pack(None), Any) is None


def test_pair_in_interface_is_unknown():
    with pytest.raises(InternalError, match="encountered unknown object code: 9"):
        decode(pack([9, 1, "x"]), Any)


def test_pair_typed():
    assert decode(pack([9, 1, "x"]), Pair) == Pair(1, "x")


def test_struct_values_by_type():
    assert decode(pack([7, 2, "min"]), Duration) == Duration(2.0, "min")
    assert decode(pack([11, "b"]), Regex) == Regex("b")


def test_struct_type_mismatch():
    with pytest.raises(PklError):
        decode(pack([7, 2, "min"]), DataSize)


def test_invalid_duration_unit():
    with pytest.raises(PklError):
        decode(pack([7, 2, "fortnight"]), Duration)


def test_typed_object(caplog):
    data = person_data(
        [PROP, "name", "Ann"],
        [PROP, "age", 30],
        [PROP, "nickname", None],
        [PROP, "unknown", 1],
    )
    with caplog.at_level(logging.WARNING, logger="pklbridge.decoder"):
        result = decode(data, Person)
    assert result == Person(name="Ann", age=30, nickname=None)
    assert any("unknown" in record.getMessage() for record in caplog.records)


def test_typed_object_missing_fields_are_zero():
    assert decode(person_data([PROP, "name", "Bo"]), Person) == Person("Bo", 0, None)


def test_typed_object_wrong_member_code():
    with pytest.raises(PklError, match="expected code 16 but found 18"):
        decode(person_data([0x12, 0, "x"]), Person)


def test_nested_typed():
    data = pack(
        [1, "Holder", "file:///h.pkl", [[PROP, "people", [5, [
            [1, "Person", "file:///h.pkl", [[PROP, "name", "Cy"], [PROP, "age", 7]]]
        ]]]]]
    )
    assert decode(data, Holder) == Holder(people=[Person("Cy", 7)])


def test_schemas_pick_subtype():
    data = pack([1, "Dog", "file:///a.pkl", [[PROP, "name", "Rex"], [PROP, "barks", True]]])
    result = decode(data, Animal, {"Dog": Dog})
    assert result == Dog(name="Rex", barks=True)


def test_typed_in_interface_needs_schema():
    data = person_data([PROP, "name", "Di"], [PROP, "age", 1])
    with pytest.raises(PklError, match="cannot decode Pkl value of type `Person`"):
        decode(data, Any)
    assert decode(data, Any, {"Person": Person}) == Person("Di", 1)


def test_typed_data_into_object():
    data = person_data([PROP, "name", "Ed"])
    result = decode(data, Object)
    assert result.name == "Person"
    assert result.properties == {"name": "Ed"}


def test_struct_bad_code():
    with pytest.raises(PklError, match="code 4 cannot be decoded into a struct"):
        decode(pack([4, []]), Person)


def test_enum():
    assert decode(pack("red"), Color) is Color.RED
    with pytest.raises(PklError, match='illegal: "blue" is not a valid Color'):
        decode(pack("blue"), Color)


def test_unsupported_type():
    with pytest.raises(InternalError):
        decode(pack(1), complex)


def test_malformed_data():
    with pytest.raises(PklError):
        decode(b"", int)


def test_decoder_reusable():
    decoder = Decoder(pack([4, [1, 2]]), None)
    first = decoder.decode(list[int])
    second = decoder.decode(list[int])
    assert first == [1, 2]
    assert second == [1, 2]