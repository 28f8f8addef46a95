"""Unit tests for auth/flows.py -- login, signup and logout orchestration.

Covers the end-to-end scenarios:
- login("alice", "correct-pw") -> Authenticated(alice.id), redirect "/"
- login("alice", "wrong-pw")   -> InvalidCredentialsError, still anonymous
- signup("bob", "Bob", "pw1", "pw2") -> PasswordMismatchError, no row
- logout() on an anonymous session -> succeeds, still anonymous, redirect "/"
plus signup policies, duplicate usernames and hash upgrades.
"""

import pytest

from auth import flows
from auth.errors import DuplicateUsernameError, InvalidCredentialsError, PasswordMismatchError
from auth.flows import (
    AllowListSignupPolicy,
    ClosedSignupPolicy,
    OpenSignupPolicy,
    signup_policy_from_settings,
)
from auth.models import User
from auth.passwords import CredentialHasher
from auth.session import AuthSession
from auth.store import UserStore
from core.config import Settings

_SECRET = "s" * 32
# Password of the "alice" fixture in conftest.py.
ALICE_PASSWORD = "correct-pw"


class TestLogin:
    def test_correct_password(self, auth: AuthSession, user_store: UserStore, hasher: CredentialHasher, alice: User):
        result = flows.login(auth, user_store, hasher, "alice", ALICE_PASSWORD)
        assert result.redirect_to == "/"
        assert result.user.id == alice.id
        assert auth.user_id == alice.id
        assert auth.current_user().username == "alice"
        assert auth.stored is True
        assert auth.remembered is False

    def test_remember_me(self, auth: AuthSession, user_store: UserStore, hasher: CredentialHasher, alice: User):
        flows.login(auth, user_store, hasher, "alice", ALICE_PASSWORD, remember=True)
        assert auth.remembered is True

    def test_custom_home(self, auth: AuthSession, user_store: UserStore, hasher: CredentialHasher, alice: User):
        result = flows.login(auth, user_store, hasher, "alice", ALICE_PASSWORD, home="/todos")
        assert result.redirect_to == "/todos"

    def test_wrong_password(self, auth: AuthSession, user_store: UserStore, hasher: CredentialHasher, alice: User):
        with pytest.raises(InvalidCredentialsError):
            flows.login(auth, user_store, hasher, "alice", "wrong-pw")
        assert auth.current_user() is None
        assert auth.dirty is False

    def test_unknown_user_same_error(self, auth: AuthSession, user_store: UserStore, hasher: CredentialHasher):
        with pytest.raises(InvalidCredentialsError) as unknown:
            flows.login(auth, user_store, hasher, "nobody", "whatever")
        assert auth.current_user() is None
        assert unknown.value.message == InvalidCredentialsError().message

    def test_corrupt_stored_hash_is_invalid_credentials(
        self, auth: AuthSession, user_store: UserStore, hasher: CredentialHasher
    ):
        user_store.insert("mallory", "Mallory", "not-a-phc-string")
        with pytest.raises(InvalidCredentialsError):
            flows.login(auth, user_store, hasher, "mallory", "anything")
        assert auth.current_user() is None

    def test_outdated_hash_is_upgraded(self, auth: AuthSession, user_store: UserStore, hasher: CredentialHasher):
        weak = CredentialHasher(time_cost=1, memory_cost=512, parallelism=1)
        user_id = user_store.insert("olduser", "Old", weak.hash("pw"))
        flows.login(auth, user_store, hasher, "olduser", "pw")
        upgraded = user_store.get_by_id(user_id).credential_hash
        assert "m=1024" in upgraded
        hasher.verify(upgraded, "pw")


class TestSignup:
    def test_success_logs_in(self, auth: AuthSession, user_store: UserStore, hasher: CredentialHasher):
        result = flows.signup(auth, user_store, hasher, OpenSignupPolicy(), "bob", "Bob", "pw1", "pw1")
        assert result.redirect_to == "/"
        bob = user_store.get_by_username("bob")
        assert bob is not None
        assert bob.display_name == "Bob"
        assert bob.credential_hash != "pw1"
        hasher.verify(bob.credential_hash, "pw1")
        assert auth.user_id == bob.id
        assert auth.stored is True

    def test_remember_applied(self, auth: AuthSession, user_store: UserStore, hasher: CredentialHasher):
        flows.signup(auth, user_store, hasher, OpenSignupPolicy(), "bob", "Bob", "pw", "pw", remember=True)
        assert auth.remembered is True

    def test_password_mismatch(self, auth: AuthSession, user_store: UserStore, hasher: CredentialHasher):
        with pytest.raises(PasswordMismatchError):
            flows.signup(auth, user_store, hasher, OpenSignupPolicy(), "bob", "Bob", "pw1", "pw2")
        assert user_store.get_by_username("bob") is None
        assert user_store.has_users() is False
        assert auth.current_user() is None
        assert auth.dirty is False

    def test_mismatch_checked_before_policy(self, auth: AuthSession, user_store: UserStore, hasher: CredentialHasher):
        with pytest.raises(PasswordMismatchError):
            flows.signup(auth, user_store, hasher, ClosedSignupPolicy(), "bob", "Bob", "pw1", "pw2")

    def test_policy_rejection_redirects_without_insert(
        self, auth: AuthSession, user_store: UserStore, hasher: CredentialHasher
    ):
        policy = AllowListSignupPolicy(["benwis"])
        result = flows.signup(auth, user_store, hasher, policy, "bob", "Bob", "pw", "pw")
        assert result.redirect_to == "/nedry"
        assert result.user is None
        assert user_store.get_by_username("bob") is None
        assert auth.current_user() is None

    def test_custom_rejected_redirect(self, auth: AuthSession, user_store: UserStore, hasher: CredentialHasher):
        result = flows.signup(
            auth, user_store, hasher, ClosedSignupPolicy(), "bob", "Bob", "pw", "pw", rejected_redirect="/closed"
        )
        assert result.redirect_to == "/closed"

    def test_allow_listed_username(self, auth: AuthSession, user_store: UserStore, hasher: CredentialHasher):
        policy = AllowListSignupPolicy(["benwis"])
        result = flows.signup(auth, user_store, hasher, policy, "benwis", "Ben", "pw", "pw")
        assert result.redirect_to == "/"
        assert auth.current_user().username == "benwis"

    def test_duplicate_username(
        self, auth: AuthSession, user_store: UserStore, hasher: CredentialHasher, alice: User
    ):
        with pytest.raises(DuplicateUsernameError):
            flows.signup(auth, user_store, hasher, OpenSignupPolicy(), "alice", "Imposter", "pw", "pw")
        assert auth.current_user() is None
        assert auth.dirty is False
        hasher.verify(user_store.get_by_username("alice").credential_hash, ALICE_PASSWORD)


class TestLogout:
    def test_anonymous_logout(self, auth: AuthSession):
        result = flows.logout(auth)
        assert result.redirect_to == "/"
        assert auth.current_user() is None

    def test_logout_after_login(self, auth: AuthSession, user_store: UserStore, hasher: CredentialHasher, alice: User):
        flows.login(auth, user_store, hasher, "alice", ALICE_PASSWORD, remember=True)
        result = flows.logout(auth)
        assert result.redirect_to == "/"
        assert auth.current_user() is None
        assert auth.stored is False

    def test_logout_twice(self, auth: AuthSession, user_store: UserStore, hasher: CredentialHasher, alice: User):
        flows.login(auth, user_store, hasher, "alice", ALICE_PASSWORD)
        flows.logout(auth)
        flows.logout(auth)
        assert auth.current_user() is None


class TestPolicyFromSettings:
    def test_open_by_default(self):
        policy = signup_policy_from_settings(Settings(secret_key=_SECRET))
        assert isinstance(policy, OpenSignupPolicy)
        assert policy("anyone")

    def test_allow_list(self):
        policy = signup_policy_from_settings(Settings(secret_key=_SECRET, signup_allowed_usernames=["benwis"]))
        assert policy("benwis")
        assert not policy("Benwis")
        assert not policy("bob")

    def test_closed(self):
        policy = signup_policy_from_settings(
            Settings(secret_key=_SECRET, self_registration_enabled=False, signup_allowed_usernames=["benwis"])
        )
        assert not policy("benwis")
