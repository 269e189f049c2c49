from typing import Optional

import bcrypt
from itsdangerous import BadSignature, URLSafeTimedSerializer

from config import get_settings


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.secret_key, salt="auth-token")


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed_password: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), hashed_password.encode("utf-8"))


def generate_token(user_id: int) -> str:
    return _serializer().dumps({"u": user_id})


def verify_token(token: str, max_age_days: Optional[int] = None) -> Optional[int]:
    """Return the user id carried by ``token``, or None if it is not valid."""
    if max_age_days is None:
        max_age_days = get_settings().token_max_age_days
    try:
        data = _serializer().loads(token, max_age=max_age_days * 86400)
    except BadSignature:
        return None

    user_id = data.get("u") if isinstance(data, dict) else None
    if not isinstance(user_id, int):
        return None
    return user_id
