"""
auth/permissions.py -- Capability checks.

Call sites depend on the PermissionEvaluator protocol, never on a concrete
class, so a richer policy engine (roles, wildcards, per-object rules) can be
dropped in by passing a different evaluator to AuthSession.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from typing import Protocol

from auth.models import User


class PermissionEvaluator(Protocol):
    def has(self, user: User, token: str) -> bool: ...


class SetMembershipEvaluator:
    """Grant a token exactly when it is in user.permissions.

    No hierarchy, no wildcard expansion, no role inheritance.
    """

    def has(self, user: User, token: str) -> bool:
        return token in user.permissions


DEFAULT_EVALUATOR: PermissionEvaluator = SetMembershipEvaluator()

# Token required to grant or revoke other users' permissions.
MANAGE_USERS = "users:manage"
