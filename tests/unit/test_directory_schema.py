"""Tests for schema probes and the schema cache."""
from contextlib import contextmanager
from unittest.mock import MagicMock

from app.core.directory.schema import DirectorySchema, SchemaCache
from tests.conftest import BASE_DN, StaticSchema


def test_cache_probes_once_per_attribute():
    introspector = StaticSchema(attributes=("employeeNumber",))
    cache = SchemaCache(introspector)

    assert cache.has_attribute("employeeNumber") is True
    assert cache.has_attribute("employeeNumber") is True
    assert cache.has_attribute("extensionAttribute99") is False
    assert cache.has_attribute("extensionAttribute99") is False

    assert introspector.probes == ["employeeNumber", "extensionAttribute99"]


def test_cache_clear_forces_new_probe():
    introspector = StaticSchema()
    cache = SchemaCache(introspector)
    cache.has_attribute("employeeNumber")
    cache.clear()
    cache.has_attribute("employeeNumber")
    assert introspector.probes == ["employeeNumber", "employeeNumber"]


def make_client(entries):
    client = MagicMock()
    client.base_dn = BASE_DN
    conn = MagicMock()

    @contextmanager
    def connection():
        yield conn

    client.connection = connection
    client.search.return_value = entries
    return client, conn


def test_directory_schema_searches_schema_partition():
    client, conn = make_client([("CN=Employee-Number,CN=Schema", {})])
    schema = DirectorySchema(client)

    assert schema.has_attribute("employeeNumber") is True
    args = client.search.call_args[0]
    assert args[0] is conn
    assert args[1] == f"CN=Schema,CN=Configuration,{BASE_DN}"
    assert "(lDAPDisplayName=employeeNumber)" in args[2]


def test_directory_schema_missing_attribute():
    client, _ = make_client([])
    assert DirectorySchema(client).has_attribute("notAnAttribute") is False


def test_directory_schema_escapes_name():
    client, _ = make_client([])
    DirectorySchema(client, schema_dn="CN=Schema").has_attribute("a*b")
    assert "a\\2ab" in client.search.call_args[0][2]
