from datetime import datetime, timedelta, timezone
from jose import jwt, JWTError
from collabnotes.core.config import settings

# -------- Issue (used by the external auth service and tests) --------
def create_access_token(data: dict, expires_delta: timedelta = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

# -------- Verify --------
def verify_token(token: str) -> dict:
    """
    Returns the payload (carries user_id) on success.
    Raises JWTError otherwise; callers map it to 401 / close code 1008.
    """
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        return payload
    except JWTError:
        raise JWTError("Token invalid or expired")
