"""
Password Hashing
================
bcrypt hashing with a configurable work factor.
"""

import re
from typing import List, Optional

import bcrypt

from config import get_settings

MIN_PASSWORD_LENGTH = 8
# bcrypt only looks at the first 72 bytes
MAX_PASSWORD_BYTES = 72


def hash_password(password: str, rounds: Optional[int] = None) -> str:
    """Salted bcrypt hash (``$2b$<rounds>$...``)."""
    cost = rounds or get_settings().bcrypt_rounds
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=cost)).decode("utf-8")


def verify_password(password: str, hashed: Optional[str]) -> bool:
    if not password or not hashed:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed hash
        return False


def validate_password_strength(password: str) -> List[str]:
    """Problems with ``password``; empty when acceptable."""
    problems: List[str] = []
    if len(password or "") < MIN_PASSWORD_LENGTH:
        problems.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    if len((password or "").encode("utf-8")) > MAX_PASSWORD_BYTES:
        problems.append(f"Password must be at most {MAX_PASSWORD_BYTES} bytes long")
    if not re.search(r"[A-Z]", password or ""):
        problems.append("Password must contain an uppercase letter")
    if not re.search(r"[a-z]", password or ""):
        problems.append("Password must contain a lowercase letter")
    if not re.search(r"\d", password or ""):
        problems.append("Password must contain a number")
    return problems
