from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass

from app.portal.constants import NAME_MAX_LENGTH, PASSWORD_MAX_LENGTH

_EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
_NAME_RE = re.compile(r"[a-zA-Z0-9]+")


@dataclass(frozen=True)
class SignupForm:
    name: str
    email: str
    password: str


def normalize_email(raw: str | None) -> str:
    return (raw or "").strip().lower()


def is_valid_email(email: str) -> bool:
    if not email or len(email) > 320 or ".." in email:
        return False
    return bool(_EMAIL_RE.match(email))


def validate_signup(form: Mapping[str, str]) -> tuple[SignupForm | None, list[str]]:
    """Parse the signup form. Returns (form, []) when valid, (None, errors) otherwise."""
    name = form.get("name") or ""
    email = normalize_email(form.get("email"))
    password = form.get("password") or ""

    errors: list[str] = []
    if not name:
        errors.append("Name is required.")
    elif len(name) > NAME_MAX_LENGTH or not _NAME_RE.fullmatch(name):
        errors.append(f"Name must be letters and digits only, at most {NAME_MAX_LENGTH} characters.")

    if not email:
        errors.append("Email is required.")
    elif not is_valid_email(email):
        errors.append("Invalid email format.")

    if not password:
        errors.append("Password is required.")
    elif len(password) > PASSWORD_MAX_LENGTH:
        errors.append(f"Password must be at most {PASSWORD_MAX_LENGTH} characters.")

    if errors:
        return None, errors
    return SignupForm(name=name, email=email, password=password), []
