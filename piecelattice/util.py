"""Byte-level UTF-8 helpers, value conversions, hashing and small utilities."""

from __future__ import annotations

import os
import random
import re
import struct
import threading
from collections.abc import Iterable, Mapping, MutableMapping
from typing import Any, Generic, Hashable, TypeVar

T = TypeVar("T")

UNICODE_ERROR = 0xFFFD
DEFAULT_SEED = 0xFFFFFFFF

_UINT64_MASK = (1 << 64) - 1
_ONE_CHAR_LEN = bytes((1,) * 12 + (2, 2, 3, 4))

_seed = DEFAULT_SEED
_thread_state = threading.local()


# Random generators


def set_random_generator_seed(seed: int) -> None:
    """Fix the seed used by newly created generators; DEFAULT_SEED is ignored."""
    global _seed
    if seed != DEFAULT_SEED:
        _seed = seed


def get_random_generator_seed() -> int:
    """Return the fixed seed, or a fresh random 32-bit seed when none is set."""
    if _seed == DEFAULT_SEED:
        return random.SystemRandom().getrandbits(32)
    return _seed


def get_random_generator() -> random.Random:
    """Return the generator owned by the calling thread."""
    generator = getattr(_thread_state, "generator", None)
    if generator is None:
        generator = random.Random(get_random_generator_seed())
        _thread_state.generator = generator
    return generator


class ReservoirSampler(Generic[T]):
    """Keeps a uniform random sample of at most ``size`` items from a stream."""

    def __init__(self, size: int, seed: int | None = None) -> None:
        self.size = size
        self.sampled: list[T] = []
        self._total = 0
        self._rng = random.Random(get_random_generator_seed() if seed is None else seed)

    def add(self, item: T) -> None:
        if self.size == 0:
            return
        self._total += 1
        if len(self.sampled) < self.size:
            self.sampled.append(item)
        else:
            n = self._rng.randint(0, self._total - 1)
            if n < len(self.sampled):
                self.sampled[n] = item

    def total_size(self) -> int:
        """Number of items offered so far."""
        return self._total


# UTF-8


def _as_bytes(data: bytes | bytearray | memoryview | str) -> bytes:
    if isinstance(data, str):
        return data.encode("utf-8")
    return bytes(data)


def one_char_len(data: bytes | str) -> int:
    """Length in bytes of the UTF-8 character starting ``data``, judged by its lead byte."""
    raw = _as_bytes(data)
    lead = raw[0] if raw else 0
    return _ONE_CHAR_LEN[lead >> 4]


def is_trail_byte(byte: int) -> bool:
    return (byte & 0xC0) == 0x80


def is_valid_codepoint(c: int) -> bool:
    return 0 <= c < 0xD800 or 0xE000 <= c <= 0x10FFFF


def _decode_at(data: bytes, start: int) -> tuple[int, int]:
    remaining = len(data) - start
    if remaining <= 0:
        return 0, 1
    lead = data[start]
    if lead < 0x80:
        return lead, 1
    if remaining >= 2 and (lead & 0xE0) == 0xC0:
        b1 = data[start + 1]
        cp = ((lead & 0x1F) << 6) | (b1 & 0x3F)
        if is_trail_byte(b1) and cp >= 0x0080 and is_valid_codepoint(cp):
            return cp, 2
    elif remaining >= 3 and (lead & 0xF0) == 0xE0:
        b1, b2 = data[start + 1], data[start + 2]
        cp = ((lead & 0x0F) << 12) | ((b1 & 0x3F) << 6) | (b2 & 0x3F)
        if is_trail_byte(b1) and is_trail_byte(b2) and cp >= 0x0800 and is_valid_codepoint(cp):
            return cp, 3
    elif remaining >= 4 and (lead & 0xF8) == 0xF0:
        b1, b2, b3 = data[start + 1], data[start + 2], data[start + 3]
        cp = ((lead & 0x07) << 18) | ((b1 & 0x3F) << 12) | ((b2 & 0x3F) << 6) | (b3 & 0x3F)
        if (
            is_trail_byte(b1)
            and is_trail_byte(b2)
            and is_trail_byte(b3)
            and cp >= 0x10000
            and is_valid_codepoint(cp)
        ):
            return cp, 4
    return UNICODE_ERROR, 1


def decode_utf8(data: bytes | str) -> tuple[int, int]:
    """Decode the first character; return ``(codepoint, bytes_consumed)``.

    Invalid input yields ``(UNICODE_ERROR, 1)``; empty input yields ``(0, 1)``.
    """
    return _decode_at(_as_bytes(data), 0)


def is_valid_decode_utf8(data: bytes | str) -> tuple[bool, int]:
    """Return whether the first character decodes cleanly, and its byte length."""
    c, mblen = decode_utf8(data)
    return c != UNICODE_ERROR or mblen == 3, mblen


def is_structurally_valid(data: bytes | str) -> bool:
    raw = _as_bytes(data)
    pos = 0
    while pos < len(raw):
        c, mblen = _decode_at(raw, pos)
        if c == UNICODE_ERROR and mblen != 3:
            return False
        if not is_valid_codepoint(c):
            return False
        pos += mblen
    return True


def encode_utf8(c: int) -> bytes:
    """Encode one code point; values beyond U+10FFFF become U+FFFD."""
    c &= 0xFFFFFFFF
    if c <= 0x7F:
        return bytes((c,))
    if c <= 0x7FF:
        return bytes((0xC0 | (c >> 6), 0x80 | (c & 0x3F)))
    if c > 0x10FFFF:
        c = UNICODE_ERROR
    if c <= 0xFFFF:
        return bytes((0xE0 | (c >> 12), 0x80 | ((c >> 6) & 0x3F), 0x80 | (c & 0x3F)))
    return bytes(
        (
            0xF0 | (c >> 18),
            0x80 | ((c >> 12) & 0x3F),
            0x80 | ((c >> 6) & 0x3F),
            0x80 | (c & 0x3F),
        )
    )


def unicode_char_to_utf8(c: int) -> bytes:
    return encode_utf8(c)


def utf8_to_unicode_text(data: bytes | str) -> list[int]:
    """Decode a whole byte string into code points, mapping bad bytes to U+FFFD."""
    raw = _as_bytes(data)
    result: list[int] = []
    pos = 0
    while pos < len(raw):
        c, mblen = _decode_at(raw, pos)
        result.append(c)
        pos += mblen
    return result


def unicode_text_to_utf8(text: Iterable[int]) -> bytes:
    return b"".join(encode_utf8(c) for c in text)


# Conversions

_TRUE_WORDS = ("1", "t", "true", "y", "yes")
_FALSE_WORDS = ("0", "f", "false", "n", "no")
_INT_RE = re.compile(r"\s*([+-]?\d+)")
_FLOAT_RE = re.compile(r"\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")
_HEX_RE = re.compile(r"\s*([+-]?)(?:0[xX])?([0-9a-fA-F]+)")


def lexical_cast(arg: str, target_type: type) -> Any:
    """Convert ``arg`` to ``target_type``; raise ValueError when it cannot be read."""
    if target_type is bool:
        lowered = arg.lower()
        if lowered in _TRUE_WORDS:
            return True
        if lowered in _FALSE_WORDS:
            return False
        raise ValueError(f"cannot read {arg!r} as bool")
    if target_type is str:
        return str(arg)
    if target_type is int:
        match = _INT_RE.match(arg)
        if match is None:
            raise ValueError(f"cannot read {arg!r} as int")
        return int(match.group(1))
    if target_type is float:
        match = _FLOAT_RE.match(arg)
        if match is None:
            raise ValueError(f"cannot read {arg!r} as float")
        return float(match.group(1))
    try:
        return target_type(arg)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"cannot read {arg!r} as {target_type.__name__}") from exc


def int_to_hex(value: int) -> str:
    """Upper-case hexadecimal; negative values show their 32-bit pattern."""
    if value < 0:
        value &= 0xFFFFFFFF
    return format(value, "X")


def hex_to_int(value: str) -> int:
    match = _HEX_RE.match(value)
    if match is None:
        raise ValueError(f"cannot read {value!r} as hexadecimal")
    number = int(match.group(2), 16)
    return -number if match.group(1) == "-" else number


def _struct_format(fmt: str) -> str:
    return fmt if fmt[:1] in "@=<>!" else "=" + fmt


def encode_pod(value: Any, fmt: str) -> bytes:
    """Pack one value with a struct format such as ``"f"`` or ``"q"``."""
    return struct.pack(_struct_format(fmt), value)


def decode_pod(data: bytes, fmt: str) -> Any:
    """Unpack one value; raise ValueError when the size does not match."""
    layout = _struct_format(fmt)
    if struct.calcsize(layout) != len(data):
        raise ValueError(
            f"expected {struct.calcsize(layout)} bytes for {fmt!r}, got {len(data)}"
        )
    return struct.unpack(layout, data)[0]


def itoa(value: int) -> str:
    return str(int(value))


# Hashing and mapping helpers


def string_view_hash(data: bytes | str) -> int:
    """DJB hash over signed bytes, wrapped to 64 bits."""
    h = 5381
    for byte in _as_bytes(data):
        signed = byte - 256 if byte >= 0x80 else byte
        h = ((h << 5) + h + signed) & _UINT64_MASK
    return h


def find_or_die(collection: Mapping[Hashable, T], key: Hashable) -> T:
    try:
        return collection[key]
    except KeyError:
        raise KeyError(f"Map key not found: {key!r}") from None


def find_with_default(collection: Mapping[Hashable, T], key: Hashable, default: T) -> T:
    return collection.get(key, default)


def insert_or_die(collection: MutableMapping[Hashable, T], key: Hashable, value: T) -> None:
    if key in collection:
        raise KeyError(f"duplicate key: {key!r}")
    collection[key] = value


_MIX_SHIFTS = ((43, 9, 8), (38, 23, 5), (35, 49, 11), (12, 18, 22))


def _mix(a: int, b: int, c: int) -> tuple[int, int, int]:
    m = _UINT64_MASK
    for s1, s2, s3 in _MIX_SHIFTS:
        a = (a - b - c) & m
        a ^= c >> s1
        b = (b - c - a) & m
        b ^= (a << s2) & m
        c = (c - a - b) & m
        c ^= b >> s3
    return a, b, c


def fingerprint_cat(x: int, y: int) -> int:
    """Combine two 64-bit fingerprints into one."""
    _, _, c = _mix(x & _UINT64_MASK, 0xE08C1D668B756F82, y & _UINT64_MASK)
    return c


# Paths, errors, CSV


def join_path(*args: str) -> str:
    if not args:
        raise TypeError("join_path() needs at least one component")
    return os.sep.join(args)


def str_error(errnum: int) -> str:
    return f"{os.strerror(errnum)} Error #{errnum}"


def str_split_as_csv(text: str) -> list[str]:
    """Split one CSV line; quoted fields may hold commas and doubled quotes."""
    result: list[str] = []
    end = len(text)
    pos = 0
    while pos < end:
        while pos < end and text[pos] in " \t":
            pos += 1
        if pos < end and text[pos] == '"':
            pos += 1
            chars: list[str] = []
            while pos < end:
                if text[pos] == '"':
                    pos += 1
                    if pos >= end or text[pos] != '"':
                        break
                chars.append(text[pos])
                pos += 1
            field = "".join(chars)
            comma = text.find(",", pos)
        else:
            comma = text.find(",", pos)
            field = text[pos : end if comma < 0 else comma]
        result.append(field)
        pos = (end if comma < 0 else comma) + 1
    return result