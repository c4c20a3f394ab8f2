from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
import jwt

from .database import SessionLocal
from .errors import AuthenticationRequired, Forbidden
from .models import User
from .security import decode_access_token

security = HTTPBearer(auto_error=False)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    # Missing header is 401, anything wrong with a presented token is 403
    if credentials is None or not credentials.credentials:
        raise AuthenticationRequired("Access token required")

    if credentials.scheme.lower() != "bearer":
        raise AuthenticationRequired("Invalid authentication scheme")

    try:
        payload = decode_access_token(credentials.credentials)
    except jwt.ExpiredSignatureError:
        raise Forbidden("Token expired")
    except jwt.InvalidTokenError:
        raise Forbidden("Invalid or expired token")

    user_id = payload.get("user_id")
    if not user_id:
        raise Forbidden("Invalid token payload")

    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise Forbidden("User not found")

    return user


def require_admin(current_user: User = Depends(get_current_user)) -> User:
    if not current_user.is_admin:
        raise Forbidden("Admin access required")
    return current_user
