from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session
from collabnotes.db.database import get_db
from collabnotes.core.security import verify_token
from collabnotes.models.user import User

# Pull the token from "Authorization: Bearer <token>"; issuance lives in the auth service
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_user_from_token(token: str, db: Session) -> User:
    """
    Valid token for an existing user -> the User row.
    Anything else -> 401.
    """
    try:
        payload = verify_token(token)
    except Exception:
        raise _unauthorized("Token invalid or expired")

    user_id = payload.get("user_id")
    if user_id is None:
        raise _unauthorized("Token invalid")

    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise _unauthorized("User not found")
    return user


def get_current_user(token: str = Depends(oauth2_scheme),
                     db: Session = Depends(get_db)) -> User:
    return get_user_from_token(token, db)
