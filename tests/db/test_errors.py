"""Tests for error classification helpers."""

from __future__ import annotations

import socket

import pytest

from dbscope.db.errors import classify_exception, classify_message, error_message, most_specific
from dbscope.db.models import QueryErrorKind


@pytest.mark.parametrize('message, kind', [
    ('Authentication failed: bad credentials', QueryErrorKind.AUTHENTICATION_FAILED),
    ('User alice has no SELECT permission: Unauthorized', QueryErrorKind.AUTHENTICATION_FAILED),
    ('Client request timeout. See Session.execute', QueryErrorKind.TIMEOUT),
    ('Operation timed out - received only 0 responses', QueryErrorKind.TIMEOUT),
    ('[Errno 111] Connection refused', QueryErrorKind.CONNECTION_REFUSED),
    ('line 1:7 no viable alternative at input', QueryErrorKind.QUERY_SYNTAX_ERROR),
    ('unconfigured table users', QueryErrorKind.QUERY_SYNTAX_ERROR),
    ('Undefined column name foo', QueryErrorKind.QUERY_SYNTAX_ERROR),
    ('server on fire', QueryErrorKind.UNKNOWN),
    ('', QueryErrorKind.UNKNOWN),
    (None, QueryErrorKind.UNKNOWN),
])
def test_classify_message(message, kind):
    assert classify_message(message) == kind


def test_authentication_wins_over_timeout():
    assert classify_message('authentication timeout') == QueryErrorKind.AUTHENTICATION_FAILED


@pytest.mark.parametrize('error, kind', [
    (TimeoutError(), QueryErrorKind.TIMEOUT),
    (socket.timeout('slow'), QueryErrorKind.TIMEOUT),
    (ConnectionRefusedError(), QueryErrorKind.CONNECTION_REFUSED),
    (PermissionError('nope'), QueryErrorKind.AUTHENTICATION_FAILED),
    (ValueError('mismatched input'), QueryErrorKind.QUERY_SYNTAX_ERROR),
])
def test_classify_exception(error, kind):
    assert classify_exception(error) == kind


def test_exception_type_name_is_considered():
    class NoHostAvailable(Exception):
        pass

    assert classify_exception(NoHostAvailable('all hosts failed')) == QueryErrorKind.CONNECTION_REFUSED


def test_most_specific():
    assert most_specific([QueryErrorKind.TIMEOUT, QueryErrorKind.AUTHENTICATION_FAILED]) == \
        QueryErrorKind.AUTHENTICATION_FAILED
    assert most_specific([QueryErrorKind.UNKNOWN, QueryErrorKind.TIMEOUT]) == QueryErrorKind.TIMEOUT
    assert most_specific([]) == QueryErrorKind.UNKNOWN


def test_error_message_is_never_empty():
    assert error_message(RuntimeError()) == 'RuntimeError'
    assert error_message(RuntimeError('  boom ')) == 'boom'
