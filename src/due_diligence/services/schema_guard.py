"""Schema Guard: turn arbitrary decoded JSON into a complete, typed payload.

The text-completion service returns untyped and sometimes malformed JSON.
:func:`coerce` walks a declared *shape* and produces a value in which every
field is present and valid, recording which fields had to be defaulted.
It never raises.

Shapes can be written by hand (``ObjectShape({"score": NumberShape(...)})``)
or derived from a pydantic model with :func:`shape_for`, which reads
``Literal`` enums, ``Field(ge=..., le=...)`` ranges, defaults, nested models,
lists, dicts and optionals.

Rules
-----
* enums: matched case-insensitively (spaces and hyphens read as ``_``);
  anything else becomes the default and is flagged.
* numbers: ints, floats and numeric strings (``"72"``, ``"72%"``,
  ``"1,200"``) are accepted; booleans, NaN, infinities and integers too
  large for a float are not.  Values are clamped into range (clamping
  alone is not flagged; exclusive ``gt``/``lt`` bounds clamp to the
  nearest value inside them); integer fields round half up.  An unusable
  value on an optional number becomes ``None``.
* strings: numbers are stringified; other types default and are flagged.
* arrays: missing or non-list becomes ``[]`` and is flagged; items are
  coerced, and non-object items of object arrays are dropped.
* objects: recurse; unknown keys are dropped; a non-object becomes the
  fully-defaulted object and is flagged (the root is reported as ``$``).
"""

from __future__ import annotations

import math
import types
import typing
from collections.abc import Mapping
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Literal, Union

from pydantic import BaseModel
from pydantic.fields import FieldInfo

ROOT = "$"


# ===================================================================== #
#  Shapes                                                                #
# ===================================================================== #

@dataclass(frozen=True)
class StringShape:
    default: str = ""
    nullable: bool = False


@dataclass(frozen=True)
class NumberShape:
    default: float = 0
    minimum: float | None = None
    maximum: float | None = None
    integer: bool = False
    nullable: bool = False

    def clamp(self, value: float) -> float | int:
        if self.minimum is not None and value < self.minimum:
            value = self.minimum
        if self.maximum is not None and value > self.maximum:
            value = self.maximum
        if self.integer:
            return int(math.floor(value + 0.5))
        return float(value)


@dataclass(frozen=True)
class BoolShape:
    default: bool = False
    nullable: bool = False


@dataclass(frozen=True)
class EnumShape:
    choices: tuple[str, ...]
    default: str | None = None
    nullable: bool = False

    def __post_init__(self) -> None:
        if not self.choices:
            raise ValueError("EnumShape needs at least one choice")
        if self.default is None:
            object.__setattr__(self, "default", self.choices[0])
        elif self.default not in self.choices:
            raise ValueError(f"Enum default {self.default!r} not in {self.choices}")

    def match(self, value: Any) -> str | None:
        if not isinstance(value, str):
            return None
        wanted = _enum_key(value)
        for choice in self.choices:
            if _enum_key(choice) == wanted:
                return choice
        return None


@dataclass(frozen=True)
class ArrayShape:
    items: Shape
    nullable: bool = False


@dataclass(frozen=True)
class ObjectShape:
    fields: Mapping[str, Shape] = field(default_factory=dict)
    nullable: bool = False


@dataclass(frozen=True)
class MappingShape:
    """A JSON object with arbitrary string keys and uniform values."""

    values: Shape
    nullable: bool = False


@dataclass(frozen=True)
class AnyShape:
    default: Any = None
    nullable: bool = True


Shape = Union[
    StringShape, NumberShape, BoolShape, EnumShape, ArrayShape, ObjectShape, MappingShape, AnyShape
]


@dataclass(frozen=True)
class GuardResult:
    """Coerced value plus the paths of every defaulted field."""

    value: Any
    fallback_fields: tuple[str, ...] = ()

    @property
    def clean(self) -> bool:
        return not self.fallback_fields


def _enum_key(text: str) -> str:
    return text.strip().lower().replace("-", "_").replace(" ", "_")


# ===================================================================== #
#  Coercion                                                              #
# ===================================================================== #

_MISSING = object()


def coerce(raw: Any, shape: Shape | type[BaseModel]) -> GuardResult:
    """Coerce *raw* into *shape*.

    Parameters
    ----------
    raw:
        Any JSON-decodable value (or anything else; it is never trusted).
    shape:
        A shape instance or a pydantic model class.
    """
    if isinstance(shape, type) and issubclass(shape, BaseModel):
        shape = shape_for(shape)
    flags: list[str] = []
    value = _coerce(raw, shape, "", flags)
    return GuardResult(value=value, fallback_fields=tuple(flags))


def default_value(shape: Shape) -> Any:
    """Return the fully-defaulted value for *shape*."""
    if isinstance(shape, (StringShape, BoolShape, EnumShape, AnyShape)):
        return shape.default
    if isinstance(shape, NumberShape):
        return shape.clamp(shape.default)
    if isinstance(shape, ArrayShape):
        return []
    if isinstance(shape, MappingShape):
        return {}
    if isinstance(shape, ObjectShape):
        return {name: default_value(sub) for name, sub in shape.fields.items()}
    raise TypeError(f"Unknown shape {shape!r}")


def _join(path: str, name: str) -> str:
    return f"{path}.{name}" if path else name


def _flag(flags: list[str], path: str) -> None:
    flags.append(path or ROOT)


def _coerce(value: Any, shape: Shape, path: str, flags: list[str]) -> Any:
    if value is _MISSING or value is None:
        if shape.nullable:
            return None
        _flag(flags, path)
        return default_value(shape)

    if isinstance(shape, AnyShape):
        return value
    if isinstance(shape, StringShape):
        return _coerce_string(value, shape, path, flags)
    if isinstance(shape, NumberShape):
        return _coerce_number(value, shape, path, flags)
    if isinstance(shape, BoolShape):
        return _coerce_bool(value, shape, path, flags)
    if isinstance(shape, EnumShape):
        matched = shape.match(value)
        if matched is None:
            _flag(flags, path)
            return shape.default
        return matched
    if isinstance(shape, ArrayShape):
        return _coerce_array(value, shape, path, flags)
    if isinstance(shape, MappingShape):
        if not isinstance(value, Mapping):
            _flag(flags, path)
            return {}
        return {
            str(key): _coerce(item, shape.values, _join(path, str(key)), flags)
            for key, item in value.items()
        }
    if isinstance(shape, ObjectShape):
        if not isinstance(value, Mapping):
            _flag(flags, path)
            return default_value(shape)
        return {
            name: _coerce(value.get(name, _MISSING), sub, _join(path, name), flags)
            for name, sub in shape.fields.items()
        }
    raise TypeError(f"Unknown shape {shape!r}")


def _coerce_string(value: Any, shape: StringShape, path: str, flags: list[str]) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    _flag(flags, path)
    return shape.default


def _parse_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError:
            return None
    elif isinstance(value, str):
        text = value.strip().replace(",", "").replace("%", "").lstrip("$€£").strip()
        try:
            number = float(text)
        except ValueError:
            return None
    else:
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def _coerce_number(value: Any, shape: NumberShape, path: str, flags: list[str]) -> float | int:
    number = _parse_number(value)
    if number is None:
        _flag(flags, path)
        return None if shape.nullable else shape.clamp(shape.default)
    return shape.clamp(number)


def _coerce_bool(value: Any, shape: BoolShape, path: str, flags: list[str]) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "yes", "1"):
        return True
    if isinstance(value, str) and value.strip().lower() in ("false", "no", "0"):
        return False
    if isinstance(value, (int, float)) and value in (0, 1):
        return bool(value)
    _flag(flags, path)
    return shape.default


def _coerce_array(value: Any, shape: ArrayShape, path: str, flags: list[str]) -> list[Any]:
    if not isinstance(value, (list, tuple)):
        _flag(flags, path)
        return []
    items: list[Any] = []
    dropped = False
    for item in value:
        if isinstance(shape.items, ObjectShape) and not isinstance(item, Mapping):
            dropped = True
            continue
        items.append(_coerce(item, shape.items, f"{path}[{len(items)}]", flags))
    if dropped:
        _flag(flags, path)
    return items


# ===================================================================== #
#  Shapes from pydantic models                                           #
# ===================================================================== #

@lru_cache(maxsize=None)
def shape_for(model: type[BaseModel]) -> ObjectShape:
    """Derive an :class:`ObjectShape` from a pydantic model class."""
    return ObjectShape(
        fields={name: _field_shape(info) for name, info in model.model_fields.items()}
    )


def _field_default(info: FieldInfo) -> Any:
    if info.is_required():
        return _MISSING
    return info.get_default(call_default_factory=True)


def _field_shape(info: FieldInfo) -> Shape:
    minimum = maximum = None
    for meta in info.metadata:
        if getattr(meta, "ge", None) is not None:
            minimum = float(meta.ge)
        elif getattr(meta, "gt", None) is not None:
            # exclusive bound: the nearest representable value inside it
            minimum = math.nextafter(float(meta.gt), math.inf)
        if getattr(meta, "le", None) is not None:
            maximum = float(meta.le)
        elif getattr(meta, "lt", None) is not None:
            maximum = math.nextafter(float(meta.lt), -math.inf)
    return _annotation_shape(info.annotation, _field_default(info), minimum, maximum)


def _annotation_shape(
    annotation: Any,
    default: Any = _MISSING,
    minimum: float | None = None,
    maximum: float | None = None,
) -> Shape:
    origin = typing.get_origin(annotation)
    args = typing.get_args(annotation)

    if origin in (Union, types.UnionType):
        inner = [a for a in args if a is not type(None)]
        nullable = len(inner) < len(args)
        base = (
            _annotation_shape(inner[0], default, minimum, maximum)
            if len(inner) == 1
            else AnyShape()
        )
        if nullable and default is None:
            return _with_nullable(base)
        return base

    has_default = default is not _MISSING and default is not None

    if origin is Literal:
        choices = tuple(str(a) for a in args)
        return EnumShape(choices=choices, default=default if default in choices else choices[0])
    if origin in (list, tuple, set, frozenset):
        return ArrayShape(items=_annotation_shape(args[0]) if args else AnyShape())
    if origin is dict:
        return MappingShape(values=_annotation_shape(args[1]) if len(args) == 2 else AnyShape())
    if annotation is bool:
        return BoolShape(default=bool(default) if has_default else False)
    if annotation in (int, float):
        base_default = float(default) if has_default else 0.0
        if annotation is int:
            minimum = None if minimum is None else float(math.ceil(minimum))
            maximum = None if maximum is None else float(math.floor(maximum))
        return NumberShape(
            default=base_default,
            minimum=minimum,
            maximum=maximum,
            integer=annotation is int,
        )
    if annotation is str:
        return StringShape(default=default if has_default and isinstance(default, str) else "")
    if isinstance(annotation, type) and issubclass(annotation, BaseModel):
        return shape_for(annotation)
    return AnyShape(default=default if has_default else None)


def _with_nullable(shape: Shape) -> Shape:
    values = {f: getattr(shape, f) for f in shape.__dataclass_fields__}
    values["nullable"] = True
    return type(shape)(**values)
