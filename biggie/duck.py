"""
Duck-typed numeric fields
A JSON field may be a literal number, the token RANDOM, or RANDOM:<start>:<end>
"""
import random
from dataclasses import dataclass
from typing import Annotated, Any, Tuple, Union

from pydantic import BeforeValidator
from pydantic_core import PydanticCustomError

RANDOM_TOKEN = "RANDOM"
RANDOM_PREFIX = "RANDOM:"

INVALID_PAYLOAD = "INVALID_PAYLOAD"
INVALID_RANGE = "INVALID_RANGE"

Number = Union[int, float]


class DuckValueError(ValueError):
    """Raised when a raw field cannot be resolved"""

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


# ==============================
# RESOLUTION
# ==============================

@dataclass(frozen=True)
class DuckKind:
    """Numeric kind a field resolves to, with its parse and draw rules"""
    name: str
    cast: type

    def parse(self, text: str) -> Number:
        try:
            return self.cast(text)
        except ValueError:
            raise DuckValueError(INVALID_PAYLOAD, f"invalid {self.name} value: {text!r}")

    def draw(self, start: Number, end: Number) -> Number:
        if self.cast is int:
            return random.randrange(start, end)
        return start + random.random() * (end - start)


INT = DuckKind("integer", int)
FLOAT = DuckKind("float", float)


def _literal(raw: Any, kind: DuckKind) -> Number:
    if isinstance(raw, bool):
        raise DuckValueError(INVALID_PAYLOAD, f"expected {kind.name}, got boolean")
    if kind is INT:
        if isinstance(raw, float):
            if not raw.is_integer():
                raise DuckValueError(INVALID_PAYLOAD, f"expected integer, got {raw}")
            return int(raw)
        return raw
    return float(raw)


def _random_range(value: str, kind: DuckKind) -> Tuple[Number, Number]:
    parts = value.split(":")
    if len(parts) != 3:
        raise DuckValueError(INVALID_PAYLOAD, f"invalid RANDOM syntax for {kind.name}: {value!r}")
    start = kind.parse(parts[1])
    end = kind.parse(parts[2])
    if start >= end:
        raise DuckValueError(
            INVALID_RANGE,
            f"invalid RANDOM range for {kind.name}: start must be less than end",
        )
    return start, end


def resolve(raw: Any, kind: DuckKind, default_range: Tuple[Number, Number]) -> Number:
    """Resolve a raw JSON scalar into a concrete number of the given kind"""
    if isinstance(raw, (int, float)):
        return _literal(raw, kind)
    if not isinstance(raw, str):
        raise DuckValueError(INVALID_PAYLOAD, f"expected {kind.name} or string, got {type(raw).__name__}")

    value = raw.strip()
    if value == RANDOM_TOKEN:
        start, end = default_range
        return kind.draw(start, end)
    if value.startswith(RANDOM_PREFIX):
        start, end = _random_range(value, kind)
        return kind.draw(start, end)
    return kind.parse(value)


def resolve_int(raw: Any, start: int, end: int) -> int:
    return resolve(raw, INT, (start, end))


def resolve_float(raw: Any, start: float, end: float) -> float:
    return resolve(raw, FLOAT, (start, end))


def randomize_text(value: str) -> str:
    """RANDOM handling for free-text parameters (colours, sentences)"""
    if value == RANDOM_TOKEN:
        return f"randomValue-{random.randrange(10000)}"
    if value.startswith(RANDOM_PREFIX):
        start, end = _random_range(value, INT)
        return str(INT.draw(start, end))
    return value


# ==============================
# PYDANTIC FIELD TYPES
# ==============================

def _validator(kind: DuckKind, start: Number, end: Number):
    def validate(raw: Any) -> Number:
        try:
            return resolve(raw, kind, (start, end))
        except DuckValueError as exc:
            raise PydanticCustomError(exc.code.lower(), exc.message)
    return validate


def DuckInt(start: int, end: int):
    """Integer field; bare RANDOM draws from [start, end)"""
    return Annotated[int, BeforeValidator(_validator(INT, start, end))]


def DuckFloat(start: float, end: float):
    """Float field; bare RANDOM draws from [start, end)"""
    return Annotated[float, BeforeValidator(_validator(FLOAT, start, end))]


# Shared field types with their default RANDOM bounds
Seconds = DuckInt(1, 60)
IntervalSeconds = DuckInt(1, 5)
Count = DuckInt(1, 10)
Percent = DuckInt(1, 100)
Megabytes = DuckInt(1, 100)
Bytes = DuckInt(1024, 1024 * 1024)
Milliseconds = DuckInt(100, 2000)
Rate = DuckFloat(0.0, 1.0)
