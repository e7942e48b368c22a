"""
Conversion between raw field slots and Python values.

Every field type has a decoder taking the fixed-width byte slice of one field
and an encoder producing exactly ``field.size`` bytes for a value. Both are
pure functions; the text encoding is always passed in by the caller.

    C  str                 space padded text
    N  int/float           right-justified ASCII numeral
    F  int/float           same as N
    L  bool                'T'/'F' style single byte
    D  datetime.date       'YYYYMMDD'
    T  datetime.datetime   two int32: Julian day, milliseconds since midnight
    I  int                 little-endian signed integer
    B  float               little-endian IEEE double
    M  MemoReference       block index into the memo file
"""

import datetime
import math
import struct
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple

from dbf_errors import UnsupportedOperationError, ValidationError
from dbf_fields import DBF_MAX_CHAR_SIZE, FieldDescriptor, is_vfp_version


JULIAN_DAY_OF_UNIX_EPOCH = 2440588
UNIX_EPOCH_DATE = datetime.date(1970, 1, 1)
MS_PER_SECOND = 1000

LOGICAL_TRUE = 'TtYy'
LOGICAL_FALSE = 'FfNn'


@dataclass(frozen=True)
class MemoReference:
    """Block index of a memo value inside the memo file."""
    block_index: int


# Date helpers
def parse_8char_date(text: str) -> datetime.date:
    """Parse an 8-character date string of the form 'YYYYMMDD'."""
    if len(text) != 8 or not text.isdigit():
        raise ValueError(f"'{text}' is not a YYYYMMDD date")
    return datetime.date(int(text[0:4]), int(text[4:6]), int(text[6:8]))


def format_8char_date(d: datetime.date) -> str:
    """Format a date as an 8-character 'YYYYMMDD' string."""
    return f"{d.year:04d}{d.month:02d}{d.day:02d}"


def julian_day_to_ymd(julian_day: int) -> Tuple[int, int, int]:
    """
    Convert a Julian day number to a proleptic Gregorian (year, month, day).

    Integer arithmetic only, so the result is exact for every day number.
    """
    s1 = julian_day + 68569
    n = 4 * s1 // 146097
    s2 = s1 - (146097 * n + 3) // 4
    i = 4000 * (s2 + 1) // 1461001
    s3 = s2 - 1461 * i // 4 + 31
    q = 80 * s3 // 2447
    s4 = q // 11
    year = 100 * (n - 49) + i + s4
    month = q + 2 - 12 * s4
    day = s3 - 2447 * q // 80
    return (year, month, day)


def date_to_julian_day(d: datetime.date) -> int:
    """Convert a date to its Julian day number."""
    return (d - UNIX_EPOCH_DATE).days + JULIAN_DAY_OF_UNIX_EPOCH


def parse_vfp_datetime(julian_day: int, ms_since_midnight: int) -> datetime.datetime:
    """
    Parse a Visual FoxPro DateTime into a UTC datetime.

    Sub-second precision is dropped.
    """
    year, month, day = julian_day_to_ymd(julian_day)
    secs_since_midnight = ms_since_midnight // MS_PER_SECOND
    mins_since_midnight = secs_since_midnight // 60
    second = secs_since_midnight % 60
    minute = mins_since_midnight % 60
    hour = mins_since_midnight // 60
    return datetime.datetime(year, month, day, hour, minute, second,
                             tzinfo=datetime.timezone.utc)


def format_vfp_datetime(d: datetime.datetime) -> Tuple[int, int]:
    """
    Format a datetime as a Visual FoxPro DateTime.

    Naive datetimes are taken to be UTC.

    Returns:
        Tuple of (julian_day, ms_since_midnight)
    """
    if d.tzinfo is None:
        d = d.replace(tzinfo=datetime.timezone.utc)
    else:
        d = d.astimezone(datetime.timezone.utc)
    julian_day = date_to_julian_day(d.date())
    ms_since_midnight = ((d.hour * 60 + d.minute) * 60 + d.second) * MS_PER_SECOND
    return (julian_day, ms_since_midnight)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


# C - character
def decode_char(raw: bytes, field: FieldDescriptor, encoding: str) -> str:
    try:
        return raw.rstrip(b' ').decode(encoding)
    except UnicodeDecodeError:
        raise ValidationError(f"text is not valid '{encoding}'", field.name) from None


def encode_char(value: Any, field: FieldDescriptor, encoding: str) -> bytes:
    if value is None:
        value = ''
    if not isinstance(value, str):
        raise ValidationError('expected a string', field.name)
    if len(value) > DBF_MAX_CHAR_SIZE:
        raise ValidationError(
            f'text is too long (maximum length is {DBF_MAX_CHAR_SIZE} chars)', field.name)
    try:
        data = value.encode(encoding)
    except UnicodeEncodeError:
        raise ValidationError(f"text cannot be encoded as '{encoding}'", field.name) from None
    if len(data) > field.size:
        raise ValidationError(
            f'text is too long (maximum length is {field.size} bytes)', field.name)
    return data.ljust(field.size, b' ')


# N, F - numeric
def decode_numeric(raw: bytes, field: FieldDescriptor, encoding: str) -> Optional[Any]:
    text = raw.strip(b' \x00').decode('ascii', errors='replace')
    if not text:
        return None
    if not field.decimal_places:
        try:
            return int(text)
        except ValueError:
            pass
    try:
        return float(text)
    except ValueError:
        raise ValidationError(f"invalid numeric value '{text}'", field.name) from None


def encode_numeric(value: Any, field: FieldDescriptor, encoding: str) -> bytes:
    if value is None:
        return b' ' * field.size
    if not _is_number(value):
        raise ValidationError('expected a number', field.name)
    decs = field.decimal_places or 0
    if isinstance(value, int):
        # ints wider than a float can hold never go through float
        text = str(value)
        if decs:
            text += '.' + '0' * decs
    else:
        if not math.isfinite(value):
            raise ValidationError('expected a finite number', field.name)
        text = f"{value:.{decs}f}"
    if len(text) > field.size:
        raise ValidationError(f'number is too wide for field size {field.size}', field.name)
    return text.rjust(field.size).encode('ascii')


# L - logical
def decode_logical(raw: bytes, field: FieldDescriptor, encoding: str) -> Optional[bool]:
    c = chr(raw[0])
    if c in LOGICAL_TRUE:
        return True
    if c in LOGICAL_FALSE:
        return False
    return None


def encode_logical(value: Any, field: FieldDescriptor, encoding: str) -> bytes:
    if value is None:
        return b'?'
    if not isinstance(value, bool):
        raise ValidationError('expected a boolean', field.name)
    return b'T' if value else b'F'


# D - date
def decode_date(raw: bytes, field: FieldDescriptor, encoding: str) -> Optional[datetime.date]:
    text = raw.strip(b' \x00').decode('ascii', errors='replace')
    if not text or text.strip('0') == '':
        return None
    try:
        return parse_8char_date(text)
    except ValueError:
        raise ValidationError(f"invalid date '{text}'", field.name) from None


def encode_date(value: Any, field: FieldDescriptor, encoding: str) -> bytes:
    if value is None:
        return b' ' * field.size
    if not isinstance(value, datetime.date):
        raise ValidationError('expected a date', field.name)
    if isinstance(value, datetime.datetime) and value.tzinfo is not None:
        value = value.astimezone(datetime.timezone.utc)
    return format_8char_date(value).encode('ascii').ljust(field.size, b' ')


# T - VFP datetime
def decode_datetime(raw: bytes, field: FieldDescriptor, encoding: str) -> Optional[datetime.datetime]:
    if raw.strip(b' ') == b'':
        return None
    julian_day, ms_since_midnight = struct.unpack("<ii", raw[:8])
    if julian_day == 0:
        return None
    try:
        return parse_vfp_datetime(julian_day, ms_since_midnight)
    except ValueError:
        raise ValidationError(
            f'invalid datetime (julian day {julian_day}, {ms_since_midnight} ms)', field.name) from None


def encode_datetime(value: Any, field: FieldDescriptor, encoding: str) -> bytes:
    if value is None:
        return b'\x00' * 8
    if not isinstance(value, datetime.datetime):
        raise ValidationError('expected a datetime', field.name)
    julian_day, ms_since_midnight = format_vfp_datetime(value)
    return struct.pack("<ii", julian_day, ms_since_midnight)


# I - binary integer
def decode_integer(raw: bytes, field: FieldDescriptor, encoding: str) -> int:
    return int.from_bytes(raw, 'little', signed=True)


def encode_integer(value: Any, field: FieldDescriptor, encoding: str) -> bytes:
    if value is None:
        value = 0
    if not _is_number(value):
        raise ValidationError('expected a number', field.name)
    if isinstance(value, float):
        if not value.is_integer():
            raise ValidationError('expected an integer', field.name)
        value = int(value)
    try:
        return value.to_bytes(field.size, 'little', signed=True)
    except OverflowError:
        raise ValidationError('integer out of range', field.name) from None


# B - double
def decode_double(raw: bytes, field: FieldDescriptor, encoding: str) -> float:
    return struct.unpack("<d", raw[:8])[0]


def encode_double(value: Any, field: FieldDescriptor, encoding: str) -> bytes:
    if value is None:
        value = 0.0
    if not _is_number(value):
        raise ValidationError('expected a number', field.name)
    try:
        return struct.pack("<d", float(value))
    except OverflowError:
        raise ValidationError('number out of range', field.name) from None


# M - memo
def decode_memo_ascii(raw: bytes, field: FieldDescriptor, encoding: str) -> Optional[MemoReference]:
    text = raw.strip(b' \x00').decode('ascii', errors='replace')
    if not text:
        return None
    try:
        block_index = int(text)
    except ValueError:
        raise ValidationError(f"invalid memo block reference '{text}'", field.name) from None
    return MemoReference(block_index) if block_index > 0 else None


def decode_memo_binary(raw: bytes, field: FieldDescriptor, encoding: str) -> Optional[MemoReference]:
    if raw.strip(b' ') == b'':
        return None
    block_index = struct.unpack("<i", raw[:4])[0]
    return MemoReference(block_index) if block_index > 0 else None


def encode_memo(value: Any, field: FieldDescriptor, encoding: str) -> bytes:
    raise UnsupportedOperationError('Writing to files with memo fields is not supported.')


# Dispatch
Decoder = Callable[[bytes, FieldDescriptor, str], Any]
Encoder = Callable[[Any, FieldDescriptor, str], bytes]


@dataclass(frozen=True)
class TypeCodec:
    """Decoder/encoder pair for one field type."""
    decode: Decoder
    encode: Encoder


_TYPE_CODECS = {
    'C': TypeCodec(decode_char, encode_char),
    'N': TypeCodec(decode_numeric, encode_numeric),
    'F': TypeCodec(decode_numeric, encode_numeric),
    'L': TypeCodec(decode_logical, encode_logical),
    'D': TypeCodec(decode_date, encode_date),
    'T': TypeCodec(decode_datetime, encode_datetime),
    'I': TypeCodec(decode_integer, encode_integer),
    'B': TypeCodec(decode_double, encode_double),
    'M': TypeCodec(decode_memo_ascii, encode_memo),
}
_VFP_MEMO_CODEC = TypeCodec(decode_memo_binary, encode_memo)


def get_type_codec(field_type: str, version: int) -> TypeCodec:
    """
    Look up the codec for a field type in a given file version.

    Raises:
        KeyError: for a type tag with no codec
    """
    if field_type == 'M' and is_vfp_version(version):
        return _VFP_MEMO_CODEC
    return _TYPE_CODECS[field_type]


__all__ = [
    'MemoReference', 'TypeCodec', 'get_type_codec',
    'parse_8char_date', 'format_8char_date',
    'julian_day_to_ymd', 'date_to_julian_day',
    'parse_vfp_datetime', 'format_vfp_datetime',
    'decode_char', 'encode_char', 'decode_numeric', 'encode_numeric',
    'decode_logical', 'encode_logical', 'decode_date', 'encode_date',
    'decode_datetime', 'encode_datetime', 'decode_integer', 'encode_integer',
    'decode_double', 'encode_double',
    'decode_memo_ascii', 'decode_memo_binary', 'encode_memo',
]
