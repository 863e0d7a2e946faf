import datetime
import logging
from typing import Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from app import config
from app.errors import AuthenticationFailed

logger = logging.getLogger(__name__)

SECRET_KEY = config.SECRET_KEY
ALGORITHM = config.ALGORITHM

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(data: dict, expires_minutes: Optional[int] = None) -> str:
    to_encode = data.copy()
    minutes = expires_minutes if expires_minutes is not None else config.ACCESS_TOKEN_EXPIRE_MINUTES
    expire = datetime.datetime.now(datetime.timezone.utc) + datetime.timedelta(minutes=minutes)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def token_for_user(user_id: int) -> str:
    return create_access_token({"sub": str(user_id)})


def decode_user_id(token: str) -> int:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        return int(payload.get("sub"))
    except (JWTError, TypeError, ValueError) as e:
        raise AuthenticationFailed("Invalid or expired token") from e


def verify_google_id_token(token: str) -> dict:
    """Verify a Google Sign-In ID token and return its claims."""
    from google.oauth2 import id_token
    from google.auth.transport import requests as google_requests

    if not config.GOOGLE_CLIENT_ID:
        raise AuthenticationFailed("Google sign-in is not configured")
    try:
        return id_token.verify_oauth2_token(token, google_requests.Request(), config.GOOGLE_CLIENT_ID)
    except ValueError as e:
        logger.warning("Rejected Google ID token: %s", e)
        raise AuthenticationFailed("Invalid Google credential") from e
