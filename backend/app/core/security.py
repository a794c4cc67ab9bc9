from __future__ import annotations

import uuid

from fastapi import Depends, HTTPException, Request
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.session import get_db
from app.models.user import User, UserRole


oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token", auto_error=False)

STAFF_ROLES = frozenset({UserRole.instructor, UserRole.admin})


def _subject_from_token(token: str) -> uuid.UUID:
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
            issuer=str(settings.jwt_issuer),
        )
        return uuid.UUID(str(payload["sub"]))
    except (JWTError, KeyError, ValueError) as e:
        raise HTTPException(status_code=401, detail="invalid token") from e


def get_current_user(
    request: Request,
    db: Session = Depends(get_db),
    token: str | None = Depends(oauth2_scheme),
) -> User:
    if not token:
        raise HTTPException(status_code=401, detail="not authenticated")

    user = db.get(User, _subject_from_token(token))
    if user is None:
        raise HTTPException(status_code=401, detail="invalid token")

    # Picked up by the request log line in main.py.
    request.state.user_id = str(user.id)
    return user


def require_instructor(user: User = Depends(get_current_user)) -> User:
    """Instructors and admins; ownership of a given assessment is checked per route."""
    if user.role not in STAFF_ROLES:
        raise HTTPException(status_code=403, detail="instructor role required")
    return user
