"""Tests for the session context and token loading."""

from __future__ import annotations

import pytest

from case_review import session as session_module
from case_review.errors import ConfigurationError, MissingIdentityError
from case_review.session import (
    Identity,
    Role,
    SecretStr,
    StaticSessionProvider,
    build_session,
    load_session,
    parse_user_id,
    require_identity,
)


@pytest.fixture
def no_env(monkeypatch, tmp_path):
    for name in ("CASE_REVIEW_TOKEN", "CASE_REVIEW_USER_ID", "CASE_REVIEW_USER_NAME", "CASE_REVIEW_ROLE"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(session_module, "TOKEN_FILE", tmp_path / "token")
    return monkeypatch


class TestSecretStr:
    def test_hidden_in_repr_and_str(self):
        secret = SecretStr("tok-ana")
        assert "tok-ana" not in repr(secret)
        assert str(secret) == "***"
        assert secret.get_secret_value() == "tok-ana"

    def test_session_repr_hides_token(self):
        session = build_session("tok-ana", 7, "Ana")
        assert "tok-ana" not in repr(session)


class TestBuildSession:
    def test_full_identity(self):
        session = build_session("tok", user_id="7", user_name="Ana", role="coordinador")
        assert session.identity == Identity(id=7, name="Ana", role=Role.COORDINATOR)

    @pytest.mark.parametrize("user_id", [None, "", "abc", True])
    def test_unusable_user_id_gives_no_identity(self, user_id):
        assert build_session("tok", user_id=user_id).identity is None

    def test_unknown_role(self):
        session = build_session("tok", user_id=3, role="admin")
        assert session.identity.role is None

    @pytest.mark.parametrize("value,expected", [(7, 7), (" 9 ", 9), ("x", None), (None, None)])
    def test_parse_user_id(self, value, expected):
        assert parse_user_id(value) == expected


class TestRequireIdentity:
    def test_returns_identity(self, session):
        assert require_identity(session).id == 7

    def test_missing_identity(self):
        provider = StaticSessionProvider(build_session("tok"))
        with pytest.raises(MissingIdentityError) as exc_info:
            require_identity(provider)
        assert "Sign in again" in exc_info.value.safe_message

    def test_replace_session(self):
        provider = StaticSessionProvider(build_session("tok"))
        provider.replace(build_session("tok", user_id=9, user_name="Luis"))
        assert require_identity(provider).name == "Luis"


class TestLoadSession:
    def test_overrides_win(self, no_env):
        no_env.setenv("CASE_REVIEW_TOKEN", "from-env")
        no_env.setenv("CASE_REVIEW_USER_ID", "1")

        session = load_session({"token": "from-config", "user_id": 7, "user_name": "Ana"})

        assert session.token.get_secret_value() == "from-config"
        assert session.identity.id == 7

    def test_environment(self, no_env):
        no_env.setenv("CASE_REVIEW_TOKEN", " from-env \n")
        no_env.setenv("CASE_REVIEW_USER_ID", "7")
        no_env.setenv("CASE_REVIEW_USER_NAME", "Ana")
        no_env.setenv("CASE_REVIEW_ROLE", "coordinador")

        session = load_session()

        assert session.token.get_secret_value() == "from-env"
        assert session.identity == Identity(7, "Ana", Role.COORDINATOR)

    def test_token_file(self, no_env, tmp_path):
        token_file = tmp_path / "token"
        token_file.write_text("from-file\n")
        token_file.chmod(0o600)

        assert load_session().token.get_secret_value() == "from-file"

    def test_insecure_token_file(self, no_env, tmp_path):
        token_file = tmp_path / "token"
        token_file.write_text("from-file\n")
        token_file.chmod(0o644)

        with pytest.raises(ConfigurationError, match="insecure permissions"):
            load_session()

    def test_no_token_anywhere(self, no_env):
        with pytest.raises(ConfigurationError, match="token not found"):
            load_session()

    def test_identity_optional(self, no_env):
        no_env.setenv("CASE_REVIEW_TOKEN", "tok")
        assert load_session().identity is None
