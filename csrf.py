import time
from typing import Optional

from itsdangerous import BadSignature, URLSafeSerializer

from config import get_settings

TOKEN_TTL_HOURS = 2


def _serializer() -> URLSafeSerializer:
    settings = get_settings()
    return URLSafeSerializer(settings.csrf_secret, salt="weekly-budget-csrf")


def generate_csrf_token(user_id: int, ttl_hours: int = TOKEN_TTL_HOURS) -> str:
    issued_at = int(time.time())
    token_data = {"u": user_id, "exp": issued_at + ttl_hours * 3600}
    return _serializer().dumps(token_data)


def validate_csrf_token(
    token: Optional[str], user_id: int, *, now: Optional[float] = None
) -> bool:
    if not token:
        return False
    try:
        data = _serializer().loads(token)
    except BadSignature:
        return False

    if not isinstance(data, dict) or data.get("u") != user_id:
        return False

    current_time = time.time() if now is None else now
    return current_time <= data.get("exp", 0)
