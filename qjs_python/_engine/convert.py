"""
Type conversions with script semantics.

Reference: https://tc39.es/ecma262/#sec-type-conversion
"""

import math
import struct
from typing import Optional, Union, TYPE_CHECKING

from .types import ClassID, ErrorKind, JSValue, Tag

if TYPE_CHECKING:
    from .context import EngineContext

Number = Union[int, float]

FLOAT32_MAX = 3.4028234663852886e38


def number_to_string(value: Number) -> str:
    if isinstance(value, int):
        return str(value)
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"
    if value == 0:
        return "0"
    if value.is_integer() and abs(value) < 1e21:
        return str(int(value))
    text = repr(value)
    if "e" in text:
        mantissa, exponent = text.split("e")
        sign = "-" if exponent.startswith("-") else "+"
        return f"{mantissa}e{sign}{exponent.lstrip('+-').lstrip('0') or '0'}"
    return text


def string_to_number(text: str) -> Number:
    s = text.strip()
    if not s:
        return 0
    if s in ("Infinity", "+Infinity"):
        return math.inf
    if s == "-Infinity":
        return -math.inf
    lowered = s.lower()
    for prefix, base in (("0x", 16), ("0o", 8), ("0b", 2)):
        if lowered.startswith(prefix):
            try:
                return int(s[2:], base)
            except ValueError:
                return math.nan
    if "inf" in lowered or "nan" in lowered or "_" in s:
        return math.nan
    try:
        number = float(s)
    except ValueError:
        return math.nan
    return number


def wrap_integer(value: Number, bits: int, signed: bool) -> int:
    """Truncate and wrap modulo 2**bits, as ToInt32 and friends do."""
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            return 0
        value = int(value)
    value &= (1 << bits) - 1
    if signed and value >= 1 << (bits - 1):
        value -= 1 << bits
    return value


def round_float32(value: float) -> float:
    """Round to the nearest single-precision value; out of range saturates to infinity."""
    if math.isnan(value) or math.isinf(value):
        return value
    if abs(value) > FLOAT32_MAX:
        return math.copysign(math.inf, value)
    return struct.unpack("f", struct.pack("f", value))[0]


def to_bool(value: JSValue) -> bool:
    tag = value.tag
    if tag in (Tag.UNDEFINED, Tag.NULL, Tag.UNINITIALIZED, Tag.EXCEPTION):
        return False
    if tag == Tag.FLOAT64:
        return not (value.payload == 0 or math.isnan(value.payload))
    if tag == Tag.OBJECT:
        return True
    return bool(value.payload)


def to_string(ctx: "EngineContext", value: JSValue) -> Optional[str]:
    """Convert to a string. Returns None if a conversion threw."""
    tag = value.tag
    if tag == Tag.STRING:
        return value.payload
    if tag in (Tag.INT, Tag.FLOAT64):
        return number_to_string(value.payload)
    if tag == Tag.BOOL:
        return "true" if value.payload else "false"
    if tag == Tag.NULL:
        return "null"
    if tag in (Tag.UNDEFINED, Tag.UNINITIALIZED):
        return "undefined"
    if tag == Tag.BIG_INT:
        return str(value.payload)
    if tag == Tag.EXCEPTION:
        return "[exception]"
    return _object_to_string(ctx, value)


def _object_to_string(ctx: "EngineContext", value: JSValue) -> Optional[str]:
    rt = ctx.rt
    method = ctx.get_property(value, "toString")
    if method.tag == Tag.EXCEPTION:
        return None
    if ctx.is_function(method):
        result = ctx.call(method, value, [])
        rt.free_value(method)
        if result.tag == Tag.EXCEPTION:
            return None
        if result.tag == Tag.OBJECT:
            rt.free_value(result)
            ctx.throw_type_error("toString returned an object")
            return None
        return to_string(ctx, result)
    rt.free_value(method)

    obj = value.payload
    if obj.class_id == ClassID.ERROR:
        name = _property_string(ctx, value, "name", "Error")
        message = _property_string(ctx, value, "message", "")
        if name is None or message is None:
            return None
        if not message:
            return name
        if not name:
            return message
        return f"{name}: {message}"
    if ctx.is_array(value):
        parts = []
        for i in range(obj.length):
            part = _property_string(ctx, value, str(i), "")
            if part is None:
                return None
            parts.append(part)
        return ",".join(parts)
    if ctx.is_function(value):
        return f"function {obj.name}() {{\n    [native code]\n}}"
    if obj.class_id == ClassID.PROMISE:
        return "[object Promise]"
    if obj.class_id == ClassID.MODULE_NS:
        return "[object Module]"
    return "[object Object]"


def _property_string(ctx: "EngineContext", value: JSValue, name: str, default: str) -> Optional[str]:
    prop = ctx.get_property(value, name)
    if prop.tag == Tag.EXCEPTION:
        return None
    try:
        if prop.tag in (Tag.UNDEFINED, Tag.NULL):
            return default
        return to_string(ctx, prop)
    finally:
        ctx.rt.free_value(prop)


def to_number(ctx: "EngineContext", value: JSValue) -> Optional[Number]:
    """Convert to a number. Returns None if a conversion threw."""
    tag = value.tag
    if tag in (Tag.INT, Tag.FLOAT64):
        return value.payload
    if tag == Tag.BOOL:
        return int(value.payload)
    if tag == Tag.NULL:
        return 0
    if tag in (Tag.UNDEFINED, Tag.UNINITIALIZED):
        return math.nan
    if tag == Tag.STRING:
        return string_to_number(value.payload)
    if tag == Tag.BIG_INT:
        ctx.throw_type_error("cannot convert bigint to number")
        return None
    if tag == Tag.EXCEPTION:
        return None

    method = ctx.get_property(value, "valueOf")
    if method.tag == Tag.EXCEPTION:
        return None
    if ctx.is_function(method):
        result = ctx.call(method, value, [])
        ctx.rt.free_value(method)
        if result.tag == Tag.EXCEPTION:
            return None
        if result.tag != Tag.OBJECT:
            return to_number(ctx, result)
        ctx.rt.free_value(result)
    else:
        ctx.rt.free_value(method)
    text = to_string(ctx, value)
    if text is None:
        return None
    return string_to_number(text)


def to_int32(ctx: "EngineContext", value: JSValue) -> Optional[int]:
    number = to_number(ctx, value)
    return None if number is None else wrap_integer(number, 32, True)


def to_uint32(ctx: "EngineContext", value: JSValue) -> Optional[int]:
    number = to_number(ctx, value)
    return None if number is None else wrap_integer(number, 32, False)


def to_int64(ctx: "EngineContext", value: JSValue) -> Optional[int]:
    number = to_number(ctx, value)
    return None if number is None else wrap_integer(number, 64, True)


def to_float64(ctx: "EngineContext", value: JSValue) -> Optional[float]:
    number = to_number(ctx, value)
    return None if number is None else float(number)


def to_big_int64(ctx: "EngineContext", value: JSValue) -> Optional[int]:
    tag = value.tag
    if tag == Tag.BIG_INT:
        return wrap_integer(value.payload, 64, True)
    if tag == Tag.BOOL:
        return int(value.payload)
    if tag == Tag.STRING:
        try:
            return wrap_integer(int(value.payload.strip() or "0", 0), 64, True)
        except ValueError:
            ctx.throw_error(ErrorKind.SYNTAX, f"cannot convert '{value.payload}' to bigint")
            return None
    ctx.throw_type_error("cannot convert to bigint")
    return None
