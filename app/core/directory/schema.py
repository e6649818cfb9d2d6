"""Schema capability probes and their process-lifetime cache."""
from __future__ import annotations

import logging
import threading
from typing import Dict, Optional

from ldap3.utils.conv import escape_filter_chars

from app.core.directory.client import DirectoryClient
from app.core.ports import SchemaIntrospector

logger = logging.getLogger(__name__)


class DirectorySchema:
    """Answers "is this attribute defined?" by searching the schema partition."""

    def __init__(self, client: DirectoryClient, schema_dn: Optional[str] = None):
        self.client = client
        self.schema_dn = schema_dn or f"CN=Schema,CN=Configuration,{client.base_dn}"

    def has_attribute(self, name: str) -> bool:
        search_filter = f"(&(objectClass=attributeSchema)(lDAPDisplayName={escape_filter_chars(name)}))"
        with self.client.connection() as conn:
            entries = self.client.search(conn, self.schema_dn, search_filter, ["lDAPDisplayName"])
        found = bool(entries)
        logger.debug("Schema probe | attribute=%s | defined=%s", name, found)
        return found


class SchemaCache:
    """Thread-safe read-through cache in front of a SchemaIntrospector.

    Concurrent misses for the same name may both probe; the probe is pure, so
    whichever result lands last is as good as the first.
    """

    def __init__(self, introspector: SchemaIntrospector):
        self._introspector = introspector
        self._values: Dict[str, bool] = {}
        self._lock = threading.Lock()

    def has_attribute(self, name: str) -> bool:
        with self._lock:
            if name in self._values:
                return self._values[name]
        value = self._introspector.has_attribute(name)
        with self._lock:
            self._values[name] = value
        return value

    def clear(self) -> None:
        with self._lock:
            self._values.clear()
