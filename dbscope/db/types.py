"""Normalization of backend-native column types to canonical type names."""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from threading import Lock
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple, Union

logger = logging.getLogger(__name__)


class CanonicalType(str, Enum):
    """Backend-agnostic scalar type names."""
    INT8 = "int8"
    INT16 = "int16"
    INT32 = "int32"
    INT64 = "int64"
    INTEGER = "integer"      # arbitrary precision integer
    DECIMAL = "decimal"      # arbitrary precision decimal
    FLOAT32 = "float32"
    FLOAT64 = "float64"
    TEXT = "text"
    BOOLEAN = "boolean"
    TIMESTAMP = "timestamp"
    DATE = "date"
    TIME = "time"
    DURATION = "duration"
    UUID = "uuid"
    INET = "inet"
    BLOB = "blob"
    JSON = "json"
    STRUCT = "struct"
    UNKNOWN = "unknown"


# Parameterized collection kinds and their arity (None = variadic)
COLLECTION_ARITY: Dict[str, Optional[int]] = {
    'list': 1,
    'set': 1,
    'map': 2,
    'tuple': None,
}


@dataclass(frozen=True)
class NativeType:
    """A backend-native type tag with optional type parameters."""
    tag: str
    params: Tuple["NativeType", ...] = ()

    def __str__(self) -> str:
        if not self.params:
            return self.tag
        return f"{self.tag}<{', '.join(str(p) for p in self.params)}>"


class TypeSyntaxError(ValueError):
    """Raised when a native type string cannot be parsed."""


_TOKEN_PATTERN = re.compile(r'\s*(?:(<)|(>)|(,)|("(?:[^"]|"")*"|[^<>,\s]+))')


def parse_native_type(type_string: str) -> NativeType:
    """Parse a type string such as ``frozen<map<text, list<int>>>``.

    Raises:
        TypeSyntaxError: If the string is not a well formed type expression.
    """
    tokens: List[str] = []
    position = 0
    text = type_string.strip()
    while position < len(text):
        match = _TOKEN_PATTERN.match(text, position)
        if not match or match.end() == position:
            raise TypeSyntaxError(f"Invalid type expression: {type_string!r}")
        tokens.append(next(group for group in match.groups() if group is not None))
        position = match.end()
        while position < len(text) and text[position].isspace():
            position += 1

    if not tokens:
        raise TypeSyntaxError("Empty type expression")

    def parse(index: int) -> Tuple[NativeType, int]:
        token = tokens[index]
        if token in ('<', '>', ','):
            raise TypeSyntaxError(f"Unexpected '{token}' in {type_string!r}")
        tag = token.strip('"').lower()
        index += 1
        if index < len(tokens) and tokens[index] == '<':
            params = []
            index += 1
            while True:
                if index >= len(tokens):
                    raise TypeSyntaxError(f"Unterminated type parameters in {type_string!r}")
                param, index = parse(index)
                params.append(param)
                if index >= len(tokens):
                    raise TypeSyntaxError(f"Unterminated type parameters in {type_string!r}")
                if tokens[index] == ',':
                    index += 1
                    continue
                if tokens[index] == '>':
                    index += 1
                    break
                raise TypeSyntaxError(f"Unexpected '{tokens[index]}' in {type_string!r}")
            return NativeType(tag, tuple(params)), index
        return NativeType(tag), index

    native, end = parse(0)
    if end != len(tokens):
        raise TypeSyntaxError(f"Trailing tokens in {type_string!r}")
    return native


class TypeNormalizer:
    """Maps native type tags to canonical names.

    The mapping is total: anything unrecognized, or unparsable, normalizes to
    ``unknown``. Collection types are normalized recursively and results are
    memoized so the same native type always yields the same name.
    """

    def __init__(
        self,
        scalar_map: Mapping[str, Union[CanonicalType, str]],
        collection_map: Optional[Mapping[str, str]] = None,
        wrapper_tags: Iterable[str] = (),
    ) -> None:
        """Initialize the normalizer.

        Args:
            scalar_map: Native scalar tag to canonical name.
            collection_map: Native collection tag to canonical collection kind
                (one of ``list``, ``set``, ``map``, ``tuple``).
            wrapper_tags: Tags that wrap exactly one type and carry no meaning
                of their own (for example ``frozen``).
        """
        self._scalar_map: Dict[str, str] = {
            tag.lower(): (name.value if isinstance(name, CanonicalType) else str(name))
            for tag, name in scalar_map.items()
        }
        self._collection_map: Dict[str, str] = {
            tag.lower(): kind for tag, kind in (collection_map or {}).items()
        }
        self._wrapper_tags: FrozenSet[str] = frozenset(tag.lower() for tag in wrapper_tags)
        self._cache: Dict[NativeType, str] = {}
        self._lock = Lock()

    def normalize(self, native: Union[NativeType, str, None]) -> str:
        """Return the canonical name for a native type or type string."""
        if native is None:
            return CanonicalType.UNKNOWN.value

        if isinstance(native, str):
            try:
                native = parse_native_type(native)
            except TypeSyntaxError as e:
                logger.debug(f"Unparsable native type, using unknown: {e}")
                return CanonicalType.UNKNOWN.value

        with self._lock:
            cached = self._cache.get(native)
        if cached is not None:
            return cached

        canonical = self._normalize(native)
        with self._lock:
            self._cache.setdefault(native, canonical)
        return canonical

    def _normalize(self, native: NativeType) -> str:
        tag = native.tag.lower()

        if tag in self._wrapper_tags:
            if len(native.params) == 1:
                return self._normalize(native.params[0])
            return CanonicalType.UNKNOWN.value

        kind = self._collection_map.get(tag)
        if kind is not None:
            params = [self._normalize(param) for param in native.params]
            arity = COLLECTION_ARITY.get(kind)
            if not params or (arity is not None and len(params) != arity):
                # Collection metadata without element types
                return kind
            return f"{kind}<{', '.join(params)}>"

        return self._scalar_map.get(tag, CanonicalType.UNKNOWN.value)
