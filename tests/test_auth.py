import time

import jwt
import pytest

from flowaid.auth import authenticate, bearer_token, decode_session_token, optional_caller
from flowaid.config import TestingConfig
from flowaid.errors import AuthenticationRequired

from conftest import make_token


def test_bearer_token_parsing(app):
    assert bearer_token("Bearer abc") == "abc"
    assert bearer_token("bearer   abc ") == "abc"
    assert bearer_token("Basic abc") is None
    assert bearer_token("") is None


def test_claims_map_to_caller(app):
    token = make_token("user-1", "Dee@Mail.com", full_name="Dee", role="admin")
    caller = decode_session_token(token)
    assert caller.user_id == "user-1"
    assert caller.email == "dee@mail.com"
    assert caller.full_name == "Dee"
    assert caller.is_admin is True


def test_roles_list_grants_admin(app):
    token = jwt.encode(
        {"sub": "u2", "aud": "authenticated", "exp": int(time.time()) + 60, "app_metadata": {"roles": ["Admin"]}},
        TestingConfig.AUTH_JWT_SECRET,
        algorithm="HS256",
    )
    assert decode_session_token(token).is_admin is True


def test_wrong_audience_rejected(app):
    with pytest.raises(AuthenticationRequired):
        decode_session_token(make_token("u3", audience="anon"))


def test_missing_secret_rejects_everything(app):
    token = make_token("u4")
    app.config["AUTH_JWT_SECRET"] = ""
    with pytest.raises(AuthenticationRequired):
        decode_session_token(token)


def test_authenticate_and_optional_caller(app):
    with pytest.raises(AuthenticationRequired):
        authenticate("")
    assert optional_caller("") is None
    assert optional_caller(f"Bearer {make_token('u5')}").user_id == "u5"
