"""
Password hashing (bcrypt) and the session principal.
"""
from dataclasses import dataclass

import bcrypt


@dataclass(frozen=True)
class Principal:
    """Who the current request acts for, taken from the session cookie."""

    user_id: int
    username: str


def hash_password(password, rounds=12):
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(password, password_hash):
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # malformed stored hash
        return False
