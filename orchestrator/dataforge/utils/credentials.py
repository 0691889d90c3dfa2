"""Credential generation helpers."""

import secrets
import string

PASSWORD_ALPHABET = string.ascii_letters + string.digits


def generate_password(length: int = 16) -> str:
    """Generate an alphanumeric password from the OS CSPRNG."""
    if length < 1:
        raise ValueError("Password length must be positive")
    return ''.join(secrets.choice(PASSWORD_ALPHABET) for _ in range(length))
