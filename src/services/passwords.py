from __future__ import annotations

import logging

from passlib.context import CryptContext

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed_password: str) -> bool:
    """Check ``password`` against a stored hash; an unreadable hash never verifies."""
    try:
        return pwd_context.verify(password, hashed_password)
    except ValueError:
        logger.warning("Stored password hash could not be identified")
        return False


__all__ = ["hash_password", "pwd_context", "verify_password"]
