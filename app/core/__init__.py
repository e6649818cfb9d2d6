"""Core Business Logic Module

This module provides the provisioning logic for Active Directory accounts and
Exchange mailboxes, independent of the HTTP framework.

Architecture:
    - Pure Python (no Flask dependencies in core logic)
    - Directory, mailbox and mail transport reached only through ports.py
    - Reusable across interfaces (HTTP API, operator CLI)

Module Structure:
    - naming.py         : Transliteration and name normalization
    - identifiers.py    : sAMAccountName resolution and name-dependent fields
    - credentials.py    : Initial password generation
    - reconciliation.py : Field-by-field update diffing
    - notifications.py  : Notification policy, SMTP delivery, background dispatch
    - locks.py          : Per-employeeId advisory locks
    - directory/        : ldap3 adapter (users, groups, schema probes)
    - mailbox/          : Mailbox lifecycle and Exchange remote PowerShell adapter
    - provisioning_service.py : Joiner / mover / leaver and mailbox orchestration
    - models.py, errors.py, validators.py : Shared data model and error taxonomy

Usage Pattern:
    Import explicitly when needed:
        from app.core.provisioning_service import build_service
        from app.core.models import CreateUserRequest
        from app.core.errors import ProvisioningError
"""
