# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Initial password generation for lab accounts.

Passwords are generated with the secrets module, contain at least one
character from each class (lower, upper, digit, symbol) and are handed to
the caller exactly once. They are never stored or re-derived.

Example:
    >>> password = generate_password()
    >>> len(password)
    16
"""

import secrets
import string

LOWER = string.ascii_lowercase
UPPER = string.ascii_uppercase
DIGITS = string.digits
# Symbols accepted by Entra ID password policy without escaping issues in CSV
SYMBOLS = "!@#$%^&*-_=+?"

CHARACTER_CLASSES = (LOWER, UPPER, DIGITS, SYMBOLS)
DEFAULT_LENGTH = 16


def generate_password(length: int = DEFAULT_LENGTH) -> str:
    """Generate a random password meeting complexity rules.

    Args:
        length: Total password length. Must leave room for every class.

    Returns:
        Random password with lower, upper, digit and symbol characters.

    Raises:
        ValueError: If length is shorter than the number of classes.
    """
    if length < len(CHARACTER_CLASSES):
        raise ValueError(
            f"Password length must be at least {len(CHARACTER_CLASSES)}"
        )

    rng = secrets.SystemRandom()
    chars = [secrets.choice(pool) for pool in CHARACTER_CLASSES]
    alphabet = "".join(CHARACTER_CLASSES)
    chars.extend(secrets.choice(alphabet) for _ in range(length - len(chars)))
    rng.shuffle(chars)
    return "".join(chars)


def meets_complexity(password: str) -> bool:
    """Check that a password contains every character class."""
    return all(any(c in pool for c in password) for pool in CHARACTER_CLASSES)
