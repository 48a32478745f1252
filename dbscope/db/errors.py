"""Classification of raw backend errors into query error kinds.

Adapters classify structured driver errors first (exception types, error
codes). When nothing structured applies, :func:`classify_message` falls back
to matching substrings of the error text. That fallback is best effort only
and is not guaranteed to be exhaustive.
"""

import socket
from typing import Iterable, Optional, Sequence, Tuple

from dbscope.db.models import QueryErrorKind

# Checked in order; the first matching kind wins
MESSAGE_PATTERNS: Sequence[Tuple[QueryErrorKind, Tuple[str, ...]]] = (
    (QueryErrorKind.AUTHENTICATION_FAILED, (
        'authentication',
        'bad credentials',
        'unauthorized',
        'not authorized',
        'access denied',
        'invalid password',
        'login failed',
    )),
    (QueryErrorKind.TIMEOUT, (
        'timed out',
        'timedout',
        'timeout',
        'etimedout',
        'deadline exceeded',
    )),
    (QueryErrorKind.CONNECTION_REFUSED, (
        'connection refused',
        'econnrefused',
        'errno 111',
        'errno 61',
        'unable to connect',
        'could not connect',
        'no host available',
        'nohostavailable',
        'unreachable',
        'connection reset',
        'name or service not known',
    )),
    (QueryErrorKind.QUERY_SYNTAX_ERROR, (
        'syntax error',
        'syntaxexception',
        'no viable alternative',
        'mismatched input',
        'extraneous input',
        'undefined column',
        'unknown identifier',
        'unconfigured table',
        'invalid query',
        'invalid request',
    )),
)


def classify_message(message: Optional[str]) -> QueryErrorKind:
    """Best-effort classification of an error message by substring match."""
    if not message:
        return QueryErrorKind.UNKNOWN
    lowered = message.lower()
    for kind, needles in MESSAGE_PATTERNS:
        if any(needle in lowered for needle in needles):
            return kind
    return QueryErrorKind.UNKNOWN


def classify_builtin(error: BaseException) -> Optional[QueryErrorKind]:
    """Classify standard library network errors, or return None."""
    if isinstance(error, (TimeoutError, socket.timeout)):
        return QueryErrorKind.TIMEOUT
    if isinstance(error, ConnectionRefusedError):
        return QueryErrorKind.CONNECTION_REFUSED
    if isinstance(error, PermissionError):
        return QueryErrorKind.AUTHENTICATION_FAILED
    return None


def classify_exception(error: BaseException) -> QueryErrorKind:
    """Classify any exception: builtin network errors first, then its message."""
    kind = classify_builtin(error)
    if kind is not None:
        return kind
    return classify_message(f"{type(error).__name__}: {error}")


def most_specific(kinds: Iterable[QueryErrorKind]) -> QueryErrorKind:
    """Pick the most telling kind among several (e.g. one per contacted host)."""
    priority = (
        QueryErrorKind.AUTHENTICATION_FAILED,
        QueryErrorKind.QUERY_SYNTAX_ERROR,
        QueryErrorKind.CONNECTION_REFUSED,
        QueryErrorKind.TIMEOUT,
        QueryErrorKind.DISALLOWED_OPERATION,
    )
    seen = set(kinds)
    for kind in priority:
        if kind in seen:
            return kind
    return QueryErrorKind.UNKNOWN


def error_message(error: BaseException) -> str:
    """Human readable message of an exception, never empty."""
    message = str(error).strip()
    return message or type(error).__name__
