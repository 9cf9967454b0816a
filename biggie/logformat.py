"""
Log line templating

A format is a string with {key} or {key:unit} placeholders, e.g.

    {client_ip} - [{time:%d/%b/%Y:%H:%M:%S}] "{method} {path}" {status_code} {latency:ms}

It is parsed once into literal and placeholder segments and then rendered
against an EventContext. Unknown keys render as ERR without breaking the
rest of the line.
"""
import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Tuple, Union

ERROR_MARKER = "ERR"

REQUIRED_KEYS = ("time", "status_code", "method", "path", "client_ip")
OPTIONAL_KEYS = ("latency", "user_agent", "protocol", "request_size", "response_size")
MAX_PLACEHOLDERS = 7

PRESETS = {
    "apache": "{client_ip} - - {time:%d/%m/%Y:%H:%M:%S} {method} {path} {status_code} -",
    "nginx": "{client_ip} - {time:%d/%b/%Y:%H:%M:%S} {method} {path} {status_code} {latency:ms}",
    "full": (
        '{time} {status_code} {method} {path} {client_ip} {latency} '
        '"{user_agent}" {protocol} {request_size} {response_size}'
    ),
}

# Unit tables, smallest first: (label, size in base unit)
LATENCY_UNITS = (("ns", 1), ("mcs", 1_000), ("ms", 1_000_000), ("s", 1_000_000_000))
SIZE_UNITS = (("b", 1), ("kb", 1024), ("mb", 1024 ** 2), ("gb", 1024 ** 3))
UNIT_ALIASES = {"micros": "mcs", "us": "mcs", "µs": "mcs"}

# strftime-like tokens understood in {time:...}; anything else is copied verbatim
TIME_TOKENS = {
    "Y": lambda t: f"{t.year:04d}",
    "y": lambda t: f"{t.year % 100:02d}",
    "m": lambda t: f"{t.month:02d}",
    "d": lambda t: f"{t.day:02d}",
    "e": lambda t: f"{t.day:2d}",
    "H": lambda t: f"{t.hour:02d}",
    "I": lambda t: f"{(t.hour % 12) or 12:02d}",
    "M": lambda t: f"{t.minute:02d}",
    "S": lambda t: f"{t.second:02d}",
    "f": lambda t: f"{t.microsecond:06d}",
    "j": lambda t: f"{t.timetuple().tm_yday:03d}",
    "p": lambda t: "AM" if t.hour < 12 else "PM",
    "b": lambda t: ("Jan", "Feb", "Mar", "Apr", "May", "Jun",
                    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")[t.month - 1],
    "B": lambda t: ("January", "February", "March", "April", "May", "June", "July",
                    "August", "September", "October", "November", "December")[t.month - 1],
    "a": lambda t: ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")[t.weekday()],
    "A": lambda t: ("Monday", "Tuesday", "Wednesday", "Thursday",
                    "Friday", "Saturday", "Sunday")[t.weekday()],
    "z": lambda t: t.strftime("%z") or "+0000",
    "Z": lambda t: t.tzname() or "UTC",
    "%": lambda t: "%",
}


@dataclass
class EventContext:
    """Everything a placeholder can be resolved against"""
    time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    status_code: int = 200
    method: str = "GET"
    path: str = "/"
    client_ip: str = "-"
    latency_ns: int = 0
    user_agent: str = "-"
    protocol: str = "HTTP/1.1"
    request_size: int = 0
    response_size: int = 0


# ==============================
# VALUE FORMATTING
# ==============================

def format_number(value: float) -> str:
    """Integral values without decimals, others trimmed to three places"""
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.3f}".rstrip("0").rstrip(".")


def auto_scale(amount: int, units: Sequence[Tuple[str, int]]) -> str:
    """Largest unit whose magnitude is >= 1, fixed three decimals"""
    label, size = units[0]
    for unit_label, unit_size in units:
        if abs(amount) >= unit_size:
            label, size = unit_label, unit_size
    return f"{amount / size:.3f}{label}"


def with_unit(amount: int, unit: Optional[str], units: Sequence[Tuple[str, int]]) -> str:
    if not unit:
        return auto_scale(amount, units)
    unit = unit.strip().lower()
    unit = UNIT_ALIASES.get(unit, unit)
    for label, size in units:
        if label == unit:
            return format_number(amount / size)
    return ERROR_MARKER


def format_time(moment: datetime, pattern: Optional[str]) -> str:
    if not pattern:
        return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    out = []
    i = 0
    while i < len(pattern):
        char = pattern[i]
        if char == "%" and i + 1 < len(pattern) and pattern[i + 1] in TIME_TOKENS:
            out.append(TIME_TOKENS[pattern[i + 1]](moment))
            i += 2
            continue
        out.append(char)
        i += 1
    return "".join(out)


# ==============================
# PLACEHOLDER RESOLUTION
# ==============================

def _resolve_key(key: str, unit: Optional[str], event: EventContext) -> str:
    if key == "time":
        return format_time(event.time, unit)
    if key == "status_code":
        return str(event.status_code)
    if key == "method":
        return event.method
    if key == "path":
        return event.path
    if key == "client_ip":
        return event.client_ip
    if key == "latency":
        return with_unit(event.latency_ns, unit, LATENCY_UNITS)
    if key == "user_agent":
        return event.user_agent
    if key == "protocol":
        return event.protocol
    if key == "request_size":
        return with_unit(event.request_size, unit, SIZE_UNITS)
    if key == "response_size":
        return with_unit(event.response_size, unit, SIZE_UNITS)
    return ERROR_MARKER


def resolve(content: str, event: EventContext) -> str:
    """Resolve the inside of one placeholder, e.g. "latency:ms" """
    key, sep, unit = content.partition(":")
    return _resolve_key(key.strip().lower(), unit if sep else None, event)


@dataclass(frozen=True)
class Placeholder:
    content: str

    @property
    def key(self) -> str:
        return self.content.partition(":")[0].strip().lower()


Segment = Union[str, Placeholder]


@dataclass(frozen=True)
class LogFormat:
    pattern: str
    segments: Tuple[Segment, ...]

    @classmethod
    def parse(cls, pattern: str) -> "LogFormat":
        segments: List[Segment] = []
        literal: List[str] = []
        i = 0
        while i < len(pattern):
            if pattern[i] == "{":
                end = pattern.find("}", i + 1)
                if end != -1:
                    if literal:
                        segments.append("".join(literal))
                        literal = []
                    segments.append(Placeholder(pattern[i + 1:end]))
                    i = end + 1
                    continue
            literal.append(pattern[i])
            i += 1
        if literal:
            segments.append("".join(literal))
        return cls(pattern=pattern, segments=tuple(segments))

    @property
    def placeholders(self) -> List[Placeholder]:
        return [s for s in self.segments if isinstance(s, Placeholder)]

    def render(self, event: EventContext) -> str:
        return "".join(
            resolve(s.content, event) if isinstance(s, Placeholder) else s
            for s in self.segments
        )

    def __str__(self) -> str:
        return self.pattern


# ==============================
# FORMAT SELECTION
# ==============================

def random_time_pattern(rng: random.Random) -> str:
    sep = rng.choice(["-", "/", ":", "."])
    return f"%Y{sep}%m{sep}%dT%H{sep}%M{sep}%S"


def generate_random_pattern(rng: Optional[random.Random] = None) -> str:
    """Random template with all required keys and up to two optional ones"""
    rng = rng or random.Random()
    extra = rng.randint(0, MAX_PLACEHOLDERS - len(REQUIRED_KEYS))
    keys = list(REQUIRED_KEYS) + rng.sample(OPTIONAL_KEYS, extra)
    rng.shuffle(keys)

    parts = []
    for key in keys:
        if key == "time":
            token = f"{{time:{random_time_pattern(rng)}}}" if rng.random() < 0.5 else "{time}"
        elif key == "latency":
            token = f"{{latency:{rng.choice(['s', 'ms', 'mcs', 'ns'])}}}"
        elif key in ("request_size", "response_size"):
            token = f"{{{key}:{rng.choice(['b', 'kb', 'mb', 'gb'])}}}"
        else:
            token = f"{{{key}}}"

        if rng.random() < 0.5:
            opening, closing = rng.choice([('"', '"'), ("'", "'"), ("[", "]")])
            token = f"{opening}{token}{closing}"

        parts.append(token)
        if rng.random() < 0.3:
            parts.append("-")
    return " ".join(parts)


def generate_random_format(rng: Optional[random.Random] = None) -> LogFormat:
    return LogFormat.parse(generate_random_pattern(rng))


def select_format(name: Optional[str], rng: Optional[random.Random] = None) -> LogFormat:
    """Map a LOG_FORMAT value to a frozen LogFormat"""
    name = name or "apache"
    lowered = name.strip().lower()
    if lowered in PRESETS:
        return LogFormat.parse(PRESETS[lowered])
    if lowered == "random":
        return generate_random_format(rng)
    return LogFormat.parse(name)


# ==============================
# SYNTHETIC EVENTS
# ==============================

_STATUS_CODES = [200, 201, 400, 401, 404, 500]
_METHODS = ["GET", "POST", "PUT", "DELETE"]
_PATHS = ["/api/random", "/test", "/stress", "/metrics"]
_CLIENT_IPS = ["192.168.1.1", "10.0.0.5", "172.16.0.3"]
_USER_AGENTS = ["curl/8.4.0", "Mozilla/5.0", "python-requests/2.31.0", "Go-http-client/1.1"]


def random_event(rng: Optional[random.Random] = None) -> EventContext:
    """Plausible request event for synthetic log generation"""
    rng = rng or random.Random()
    return EventContext(
        time=datetime.now(timezone.utc),
        status_code=rng.choice(_STATUS_CODES),
        method=rng.choice(_METHODS),
        path=rng.choice(_PATHS),
        client_ip=rng.choice(_CLIENT_IPS),
        latency_ns=rng.randrange(500) * 1_000_000,
        user_agent=rng.choice(_USER_AGENTS),
        protocol=rng.choice(["HTTP/1.0", "HTTP/1.1", "HTTP/2"]),
        request_size=rng.randrange(64, 4096),
        response_size=rng.randrange(128, 1024 * 1024),
    )
