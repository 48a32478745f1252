"""Tests for failure-tolerant schema introspection."""

from __future__ import annotations

import logging

import pytest

from dbscope.exceptions import BackendError


@pytest.fixture
def handle(memory_adapter):
    return memory_adapter.connect(None)


def test_list_databases_skips_system(memory_adapter, handle):
    databases = memory_adapter.list_databases(handle)

    assert [(d.name, d.collections_count) for d in databases] == [('shop', 2), ('analytics', 0)]


def test_count_failure_degrades_to_zero(memory_adapter, handle, caplog):
    memory_adapter.count_errors.add('shop')

    with caplog.at_level(logging.WARNING, logger='dbscope.db.schema_introspector'):
        databases = memory_adapter.list_databases(handle)

    assert [(d.name, d.collections_count) for d in databases] == [('shop', 0), ('analytics', 0)]
    assert 'collection count for database shop' in caplog.text


def test_primary_failure_raises_backend_error(memory_adapter, handle):
    def broken(handle):
        raise ConnectionResetError('connection reset by peer')

    memory_adapter.fetch_database_names = broken

    with pytest.raises(BackendError) as exc_info:
        memory_adapter.list_databases(handle)
    assert exc_info.value.backend_type == 'memory'
    assert 'Failed to list databases' in str(exc_info.value)


def test_list_collections_with_column_hints(memory_adapter, handle):
    collections = memory_adapter.list_collections(handle, 'shop')

    assert [(c.name, c.columns_count) for c in collections] == [('users', 3), ('orders', 3)]


def test_column_count_failure_keeps_other_collections(memory_adapter, handle, caplog):
    original = memory_adapter.count_columns

    def count_columns(handle, database, collection):
        if collection == 'users':
            raise TimeoutError('column count timed out')
        return original(handle, database, collection)

    memory_adapter.count_columns = count_columns

    with caplog.at_level(logging.WARNING, logger='dbscope.db.schema_introspector'):
        collections = memory_adapter.list_collections(handle, 'shop')

    assert [(c.name, c.columns_count) for c in collections] == [('users', 0), ('orders', 3)]
    assert 'column count timed out' in caplog.text


def test_get_schema_skips_unparsable_index(memory_adapter, handle, caplog):
    with caplog.at_level(logging.WARNING, logger='dbscope.db.schema_introspector'):
        schema = memory_adapter.get_schema(handle, 'shop', 'users')

    assert [(c.name, c.type) for c in schema.columns] == [
        ('id', 'int32'), ('name', 'text'), ('tags', 'set<text>'),
    ]
    assert schema.columns[0].partition_key
    assert [i.name for i in schema.indexes] == ['users_name_idx']
    assert 'broken_idx' in caplog.text


def test_index_listing_failure_yields_no_indexes(memory_adapter, handle):
    def broken(handle, database, collection):
        raise RuntimeError('system_schema.indexes unavailable')

    memory_adapter.fetch_indexes = broken

    schema = memory_adapter.get_schema(handle, 'shop', 'users')

    assert len(schema.columns) == 3
    assert schema.indexes == []


def test_index_parser_exception_is_skipped(memory_adapter, handle):
    memory_adapter.indexes[('shop', 'users')].append({'index_name': 'weird', 'column': None})
    original = memory_adapter.parse_index

    def parse(raw):
        if raw['index_name'] == 'weird':
            raise TypeError('bad target')
        return original(raw)

    memory_adapter.parse_index = parse

    indexes = memory_adapter.introspector.list_indexes(handle, 'shop', 'users')

    assert [i.name for i in indexes] == ['users_name_idx']
