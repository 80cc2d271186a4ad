from datetime import datetime, timedelta
from typing import Optional
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy import select
from sqlalchemy.orm import Session
import logging

from db.database import get_db
from db.models import User, Token, UserStatus
from api.services.errors import UnauthorizedError
import os
from uuid import uuid4
from dotenv import load_dotenv

load_dotenv()
SECRET_KEY = os.getenv("JWT_SECRET_KEY", "your-secure-secret-key-123")

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRES_IN = timedelta(
    seconds=int(os.getenv("JWT_ACCESS_TOKEN_EXPIRES_IN", "86400"))
)

# A missing header is reported as UNAUTHORIZED by get_current_user, not as a bare 403.
security = HTTPBearer(auto_error=False)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

logger = logging.getLogger(__name__)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    """Create a new JWT token."""
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta or ACCESS_TOKEN_EXPIRES_IN)
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt


def issue_token(db: Session, user: User) -> Token:
    """Create and store an access token for a user who has just logged in."""
    access_token = create_access_token({"sub": str(user.id), "role": user.role.value, "jti": uuid4().hex})
    token = Token(
        user_id=user.id,
        access_token=access_token,
        expires_at=datetime.utcnow() + ACCESS_TOKEN_EXPIRES_IN,
    )
    db.add(token)
    user.last_login = datetime.utcnow()
    return token


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    """Resolve the authenticated user of the request or raise UNAUTHORIZED."""
    if credentials is None:
        raise UnauthorizedError("no session")
    token = credentials.credentials
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        user_id = payload.get("sub")
        if user_id is None:
            logger.warning("[AUTH] No 'sub' in token payload")
            raise UnauthorizedError("invalid token")
        user_id = int(user_id)
    except (JWTError, ValueError) as e:
        logger.warning(f"[AUTH] JWT decode error: {e}")
        raise UnauthorizedError("invalid token")

    # Check if token is in database and not revoked
    db_token = db.execute(
        select(Token).where(Token.access_token == token, Token.revoked.is_(False))
    ).scalar_one_or_none()
    if not db_token:
        logger.warning("[AUTH] Token not found in DB or revoked")
        raise UnauthorizedError("session revoked")

    user = db.get(User, user_id)
    if user is None or user.status != UserStatus.ACTIVE:
        logger.warning(f"[AUTH] No active user for user_id: {user_id}")
        raise UnauthorizedError("user inactive")
    db_token.last_used_at = datetime.utcnow()
    return user
