"""
auth/validation.py -- Input normalization shared by the service, store, and CLI.

Each function returns the normalized value or raises ValidationFailed. The
AuthService calls these before touching any store, so malformed input never
causes a side effect.
"""

from __future__ import annotations

from auth.errors import ValidationFailed

MIN_PASSWORD_LENGTH = 8
# Argon2 has no input limit, but an unbounded password is a cheap DoS vector
# against a deliberately expensive hash.
MAX_PASSWORD_LENGTH = 255
MAX_NAME_LENGTH = 100
MAX_EMAIL_LENGTH = 255


def normalize_email(value: str) -> str:
    email = (value or "").strip().lower()
    if len(email) < 5 or len(email) > MAX_EMAIL_LENGTH:
        raise ValidationFailed("Email must be between 5 and 255 characters.")
    local, sep, domain = email.partition("@")
    if not sep or not local or "@" in domain:
        raise ValidationFailed("Email must contain exactly one '@'.")
    if "." not in domain or domain.startswith(".") or domain.endswith("."):
        raise ValidationFailed("Email domain must contain '.'.")
    return email


def validate_password(value: str) -> str:
    """Length checks only. The password itself is never trimmed or altered."""
    if value is None or len(value) < MIN_PASSWORD_LENGTH:
        raise ValidationFailed(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long.")
    if len(value) > MAX_PASSWORD_LENGTH:
        raise ValidationFailed(f"Password must be at most {MAX_PASSWORD_LENGTH} characters long.")
    return value


def normalize_person_name(value: str, field_name: str = "Name") -> str:
    name = (value or "").strip()
    if not name:
        raise ValidationFailed(f"{field_name} cannot be empty.")
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationFailed(f"{field_name} too long (max {MAX_NAME_LENGTH} chars).")
    return name


def normalize_role_name(value: str) -> str:
    """Trim and upper-case. Role names are unique case-insensitively."""
    name = (value or "").strip()
    if not name:
        raise ValidationFailed("Role name cannot be empty.")
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationFailed(f"Role name too long (max {MAX_NAME_LENGTH} chars).")
    return name.upper()


def normalize_permission_name(value: str) -> str:
    """Trim and lower-case. Permission names are unique case-insensitively."""
    name = (value or "").strip()
    if not name:
        raise ValidationFailed("Permission name cannot be empty.")
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationFailed(f"Permission name too long (max {MAX_NAME_LENGTH} chars).")
    return name.lower()
