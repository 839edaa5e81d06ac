from typing import Optional

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from config import Settings
from errors import UnauthorizedError


def _serializer(settings: Settings) -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(settings.token_secret, salt="access-token")


def issue_access_token(user_id: str, settings: Settings) -> str:
    return _serializer(settings).dumps({"u": user_id})


def read_access_token(token: str, settings: Settings) -> str:
    serializer = _serializer(settings)
    try:
        data = serializer.loads(token, max_age=settings.token_max_age_hours * 3600)
    except SignatureExpired as exc:
        raise UnauthorizedError("Token has expired") from exc
    except BadSignature as exc:
        raise UnauthorizedError("Token is not valid") from exc

    user_id = data.get("u") if isinstance(data, dict) else None
    if not isinstance(user_id, str) or not user_id:
        raise UnauthorizedError("Token is not valid")
    return user_id


def bearer_token(header: Optional[str]) -> str:
    if not header:
        raise UnauthorizedError("No token, authorization denied")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise UnauthorizedError("No token, authorization denied")
    return token.strip()
