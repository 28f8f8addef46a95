"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores, the auth
session and the flows do the work.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class User:
    """An account that can log in.

    credential_hash is a PHC string produced by CredentialHasher -- never the
    plaintext. permissions is loaded from the user_permissions table and is
    only ever membership-tested.
    """

    username: str
    display_name: str
    credential_hash: str
    id: int | None = None
    permissions: frozenset[str] = field(default_factory=frozenset)
    created_at: str | None = None


@dataclass
class SessionRecord:
    """Server-side state behind one session cookie.

    store and remember are independent: store decides whether the record is
    written to the durable sessions table, remember decides the cookie
    lifetime and the record's TTL. data holds JSON-serializable attributes
    owned by other parts of the application.
    """

    session_id: str
    user_id: int | None = None
    store: bool = False
    remember: bool = False
    data: dict[str, Any] = field(default_factory=dict)
    expires_at: float = 0.0
