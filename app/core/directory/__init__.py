"""Active Directory client library.

Architecture:
- client.py: ldap3 connection factory, bind and result-code handling
- users.py: user lookup, create, attribute writes, rename, group membership
- schema.py: schema capability probes and their thread-safe cache

Usage:
    from app.core.directory import DirectoryClient, UserDirectory

    client = DirectoryClient("dc01.company.local", "DC=company,DC=local",
                             username="COMPANY\\svc-provisioning", password="...")
    users = UserDirectory(client)
    record = users.find_by_unique_key("short_name", "johdo")
"""
from .client import DirectoryClient, base_dn_from_domain, REQUEST_TIMEOUT
from .schema import DirectorySchema, SchemaCache
from .users import UserDirectory, user_filter, record_from_entry, parent_dn

__all__ = [
    "DirectoryClient",
    "base_dn_from_domain",
    "REQUEST_TIMEOUT",
    "DirectorySchema",
    "SchemaCache",
    "UserDirectory",
    "user_filter",
    "record_from_entry",
    "parent_dn",
]
