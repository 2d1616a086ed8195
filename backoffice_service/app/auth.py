"""Учётные записи сотрудников: bcrypt-хеши паролей и JWT для бэк-офиса.

Портал клиентов работает по одноразовым токенам (tokens.py) и сюда не
относится.
"""
import logging
import os
from datetime import datetime, timedelta
from typing import Optional

import bcrypt
from jose import JWTError, jwt

logger = logging.getLogger(__name__)

SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
# одна рабочая смена
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "480"))


def get_password_hash(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(password: str, stored_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode(), stored_hash.encode())
    except ValueError:
        logger.warning("Stored password hash is malformed")
        return False


def create_access_token(claims: dict, expires_minutes: int = ACCESS_TOKEN_EXPIRE_MINUTES) -> str:
    expires_at = datetime.utcnow() + timedelta(minutes=expires_minutes)
    return jwt.encode({**claims, "exp": expires_at}, SECRET_KEY, algorithm=ALGORITHM)


def issue_staff_token(user) -> str:
    return create_access_token({"sub": str(user.id), "admin": bool(user.is_admin)})


def verify_token(token: str) -> Optional[dict]:
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as e:
        logger.warning(f"Rejected staff token: {e}")
        return None


def staff_id_from_token(token: str) -> Optional[int]:
    """Id сотрудника из токена или None, если токен недействителен."""
    payload = verify_token(token)
    if payload is None:
        return None
    subject = str(payload.get("sub") or "")
    return int(subject) if subject.isdigit() else None
