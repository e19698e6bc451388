import pytest

from auth import Identity, TokenValidator, extract_bearer
from exceptions import AuthenticationError, ConfigurationError


def test_valid_token_yields_identity(validator, make_token):
    identity = validator.validate(make_token(user_id="u1", role="waiter", email="ana@pambazo.test"))
    assert identity == Identity(id="u1", email="ana@pambazo.test", role="waiter")


def test_numeric_id_is_stringified(validator, make_token):
    identity = validator.validate(make_token(user_id=42, role="kitchen"))
    assert identity.id == "42"


@pytest.mark.parametrize("token", [None, ""])
def test_missing_token(validator, token):
    with pytest.raises(AuthenticationError) as exc:
        validator.validate(token)
    assert exc.value.reason == "Authentication token required"


def test_expired_token(validator, make_token):
    with pytest.raises(AuthenticationError) as exc:
        validator.validate(make_token(expires_in=-60))
    assert exc.value.reason == "Authentication token expired"


def test_wrong_signature(validator, make_token):
    token = make_token(secret="another-secret-that-is-also-32-bytes-long")
    with pytest.raises(AuthenticationError) as exc:
        validator.validate(token)
    assert exc.value.reason == "Invalid authentication token"


def test_garbage_token(validator):
    with pytest.raises(AuthenticationError) as exc:
        validator.validate("not.a.jwt")
    assert exc.value.reason == "Invalid authentication token"


@pytest.mark.parametrize("claim", ["id", "email", "role", "exp"])
def test_missing_claims(validator, make_token, claim):
    with pytest.raises(AuthenticationError) as exc:
        validator.validate(make_token(omit=(claim,)))
    assert exc.value.reason == "Invalid authentication token"


def test_unknown_role(validator, make_token):
    with pytest.raises(AuthenticationError) as exc:
        validator.validate(make_token(role="manager"))
    assert exc.value.reason == "Invalid authentication token"
    assert "manager" in exc.value.detail


def test_missing_secret_is_a_configuration_error(make_token):
    with pytest.raises(ConfigurationError):
        TokenValidator(secret="").validate(make_token())


def test_extract_bearer():
    assert extract_bearer("Bearer abc.def") == "abc.def"
    assert extract_bearer("bearer   abc") == "abc"
    assert extract_bearer("Basic abc") is None
    assert extract_bearer("Bearer ") is None
    assert extract_bearer(None) is None
