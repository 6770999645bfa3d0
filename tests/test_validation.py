import pytest

from app.portal.security import hash_password, verify_password
from app.portal.utils import is_safe_next
from app.portal.validation import is_valid_email, normalize_email, validate_signup


@pytest.mark.parametrize(
    "email,ok",
    [
        ("a@example.com", True),
        ("first.last+tag@sub.example.org", True),
        ("no-at-sign.example.com", False),
        ("two@@example.com", False),
        ("missing@tld", False),
        ("dots..twice@example.com", False),
        ("", False),
    ],
)
def test_is_valid_email(email, ok):
    assert is_valid_email(email) is ok


def test_normalize_email():
    assert normalize_email("  Mixed@Case.COM ") == "mixed@case.com"
    assert normalize_email(None) == ""


def test_validate_signup_accepts_boundary_lengths():
    form, errors = validate_signup({"name": "n" * 20, "email": "x@example.com", "password": "p" * 20})
    assert errors == []
    assert form is not None
    assert form.name == "n" * 20


def test_validate_signup_collects_every_error():
    form, errors = validate_signup({"name": "bad name", "email": "bad", "password": "p" * 21})
    assert form is None
    assert len(errors) == 3


def test_password_hash_round_trip():
    h = hash_password("secret")
    assert h != "secret"
    assert verify_password(h, "secret")
    assert not verify_password(h, "Secret")
    assert not verify_password("", "secret")


@pytest.mark.parametrize(
    "nxt,ok",
    [("/members", True), ("//evil.example.com", False), ("https://evil.example.com", False), ("/\\evil", False), ("", False)],
)
def test_is_safe_next(nxt, ok):
    assert is_safe_next(nxt) is ok


@pytest.mark.parametrize("name", [" bob", "bob ", "\tbob", "bob\n"])
def test_validate_signup_rejects_surrounding_whitespace_in_name(name):
    form, errors = validate_signup({"name": name, "email": "x@example.com", "password": "pw"})
    assert form is None
    assert len(errors) == 1
