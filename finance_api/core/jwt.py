import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt

from ..config import settings


class InvalidSubjectError(JWTError):
    pass


def create_access_token(
    user_id: uuid.UUID,
    claims: Optional[Dict[str, Any]] = None,
    expires_in: Optional[timedelta] = None,
) -> str:
    now = datetime.now(timezone.utc)
    expire = now + (expires_in or timedelta(minutes=settings.access_token_expire_minutes))
    to_encode = dict(claims or {})
    to_encode.update(
        {
            "sub": str(user_id),
            "iat": int(now.timestamp()),
            "exp": int(expire.timestamp()),
        }
    )
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> Dict[str, Any]:
    return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])


def user_id_from_token(token: str) -> uuid.UUID:
    """Decode ``token`` and return the user id stored in its subject.

    Raises ``ExpiredSignatureError``/``JWTError`` from python-jose, or
    ``InvalidSubjectError`` when the subject is missing or malformed.
    """
    payload = decode_access_token(token)
    sub = payload.get("sub")
    if sub is None:
        raise InvalidSubjectError("missing subject")
    try:
        return uuid.UUID(str(sub))
    except ValueError as e:
        raise InvalidSubjectError("bad subject format") from e
