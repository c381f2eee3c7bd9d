"""reqchain sysfuncs - the built-in ``{{$function ...}}`` library.

  {{$guid}} / {{$uuid}}                 random UUID v4
  {{$timestamp [offset unit]}}          unix seconds (UTC)
  {{$datetime format [offset unit]}}    UTC time, format: iso8601 | rfc1123 | tokens
  {{$localDatetime format [...]}}       same, local wall-clock time
  {{$randomInt min max}}                integer in [min, max)
  {{$processEnv [%]name}}               OS environment variable
  {{$dotenv [%]name}}                   value from .env.<environment> or .env
  {{$prompt name [description...]}}     ask the user

Offset units: y, M, w, d, h, m, s, ms.
"""

import calendar
import datetime
import re
import secrets
import uuid
from collections.abc import Callable, Mapping
from pathlib import Path

from dotenv import dotenv_values

from reqchain.errors import VariableError

PromptHandler = Callable[[str, str, bool], str]

PASSWORD_NAMES = ("password", "passwd", "pass", "secret")

_MONTHS = [
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
]
_WEEKDAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]

# Longest tokens first: the regex alternation is tried in order at every
# position, so YYYY is never consumed as two YY tokens.
_DATE_TOKENS = ("YYYY", "MMMM", "dddd", "DDDD", "MMM", "ddd", "SSS",
                "YY", "MM", "DD", "HH", "hh", "mm", "ss", "ZZ")
_DATE_TOKEN_RE = re.compile("|".join(_DATE_TOKENS))


def _now(local: bool = False) -> datetime.datetime:
    if local:
        return datetime.datetime.now().astimezone()
    return datetime.datetime.now(datetime.timezone.utc)


# ── Time helpers ────────────────────────────────────────────────────────


def _add_months(dt: datetime.datetime, months: int) -> datetime.datetime:
    total = dt.year * 12 + (dt.month - 1) + months
    year, month = divmod(total, 12)
    month += 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)


def add_offset(dt: datetime.datetime, offset: int, unit: str) -> datetime.datetime:
    """Shift dt by offset units. Unknown units leave dt unchanged.

    y / M move along the calendar (the day is clamped to the end of a
    shorter month); w / d add whole days; h / m / s / ms add fixed
    durations.
    """
    if unit == "y":
        return _add_months(dt, offset * 12)
    if unit == "M":
        return _add_months(dt, offset)
    if unit == "w":
        return dt + datetime.timedelta(weeks=offset)
    if unit == "d":
        return dt + datetime.timedelta(days=offset)
    if unit == "h":
        return dt + datetime.timedelta(hours=offset)
    if unit == "m":
        return dt + datetime.timedelta(minutes=offset)
    if unit == "s":
        return dt + datetime.timedelta(seconds=offset)
    if unit == "ms":
        return dt + datetime.timedelta(milliseconds=offset)
    return dt


def _utc_offset(dt: datetime.datetime) -> str:
    offset = dt.utcoffset() or datetime.timedelta(0)
    minutes = int(offset.total_seconds()) // 60
    sign = "-" if minutes < 0 else "+"
    hours, mins = divmod(abs(minutes), 60)
    return f"{sign}{hours:02d}{mins:02d}"


def format_datetime(dt: datetime.datetime, fmt: str) -> str:
    """Format dt with a Day.js style token pattern.

    Recognised tokens: YYYY YY MMMM MMM MM dddd ddd DD DDDD HH hh mm ss SSS ZZ.
    Anything else is copied through. Surrounding quotes are removed.
    """
    fmt = fmt.strip("'\"")

    def _token(m: re.Match) -> str:
        tok = m.group(0)
        if tok == "YYYY":
            return f"{dt.year:04d}"
        if tok == "YY":
            return f"{dt.year % 100:02d}"
        if tok == "MMMM":
            return _MONTHS[dt.month - 1]
        if tok == "MMM":
            return _MONTHS[dt.month - 1][:3]
        if tok == "MM":
            return f"{dt.month:02d}"
        if tok == "dddd":
            return _WEEKDAYS[dt.weekday()]
        if tok == "ddd":
            return _WEEKDAYS[dt.weekday()][:3]
        if tok == "DD":
            return f"{dt.day:02d}"
        if tok == "DDDD":
            return f"{dt.timetuple().tm_yday:03d}"
        if tok == "HH":
            return f"{dt.hour:02d}"
        if tok == "hh":
            return f"{(dt.hour % 12) or 12:02d}"
        if tok == "mm":
            return f"{dt.minute:02d}"
        if tok == "ss":
            return f"{dt.second:02d}"
        if tok == "SSS":
            return f"{dt.microsecond // 1000:03d}"
        return _utc_offset(dt)

    return _DATE_TOKEN_RE.sub(_token, fmt)


def format_iso8601(dt: datetime.datetime) -> str:
    """RFC 3339 seconds precision, ``Z`` for a zero offset."""
    text = dt.isoformat(timespec="seconds")
    if text.endswith("+00:00"):
        text = text[:-6] + "Z"
    return text


def format_rfc1123(dt: datetime.datetime) -> str:
    zone = dt.tzname() or "UTC"
    return (
        f"{_WEEKDAYS[dt.weekday()][:3]}, {dt.day:02d} {_MONTHS[dt.month - 1][:3]} "
        f"{dt.year:04d} {dt.hour:02d}:{dt.minute:02d}:{dt.second:02d} {zone}"
    )


def _parse_int(value: str, what: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise VariableError(what, f"'{value}' must be an integer") from None


# ── Functions ───────────────────────────────────────────────────────────


def guid() -> str:
    return str(uuid.uuid4())


def timestamp(args: list[str]) -> str:
    dt = _now()
    if len(args) >= 2:
        dt = add_offset(dt, _parse_int(args[0], "timestamp offset"), args[1])
    return str(int(dt.timestamp()))


def datetime_value(args: list[str], local: bool = False) -> str:
    if not args:
        raise VariableError("$datetime", "format argument required")
    fmt = args[0]
    dt = _now(local)
    if len(args) >= 3:
        dt = add_offset(dt, _parse_int(args[1], "datetime offset"), args[2])

    if fmt == "iso8601":
        return format_iso8601(dt)
    if fmt == "rfc1123":
        return format_rfc1123(dt)
    return format_datetime(dt, fmt)


def random_int(args: list[str]) -> str:
    if len(args) < 2:
        raise VariableError("$randomInt", "requires min and max arguments")
    low = _parse_int(args[0], "min")
    high = _parse_int(args[1], "max")
    if low >= high:
        raise VariableError("$randomInt", "min must be less than max")
    return str(low + secrets.randbelow(high - low))


def _indirect(name: str, lookup: Callable[[str], str] | None) -> str:
    """Resolve a ``%name`` reference through the environment table."""
    if name.startswith("%") and lookup is not None:
        try:
            return lookup(name[1:])
        except VariableError:
            return name
    return name


def process_env(
    args: list[str],
    environ: Mapping[str, str],
    lookup: Callable[[str], str] | None = None,
) -> str:
    if not args:
        raise VariableError("$processEnv", "requires variable name")
    return environ.get(_indirect(args[0], lookup), "")


def dotenv_file(directory: str | Path, environment: str = "") -> Path:
    """Return .env.<environment> if it exists, otherwise .env."""
    directory = Path(directory)
    if environment:
        specific = directory / f".env.{environment}"
        if specific.is_file():
            return specific
    return directory / ".env"


def dotenv(
    args: list[str],
    directory: str | Path,
    environment: str = "",
    lookup: Callable[[str], str] | None = None,
) -> str:
    if not args:
        raise VariableError("$dotenv", "requires variable name")
    name = _indirect(args[0], lookup)

    path = dotenv_file(directory, environment)
    if not path.is_file():
        raise VariableError("$dotenv", f"dotenv file not found: {path}")

    values = dotenv_values(str(path))
    if name not in values:
        raise VariableError("dotenv variable", f"'{name}' not found in {path}")
    return values[name] or ""


def is_password_name(name: str) -> bool:
    return name.lower() in PASSWORD_NAMES


def prompt(args: list[str], handler: PromptHandler | None) -> str:
    if not args:
        raise VariableError("$prompt", "requires a variable name")
    name = args[0]
    description = " ".join(args[1:])
    if handler is None:
        raise VariableError("$prompt", f"no prompt handler configured for '{name}'")
    return handler(name, description, is_password_name(name))
