from datetime import datetime, timedelta, timezone
from jose import jwt
from passlib.context import CryptContext

from app.core.config import settings

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
JWT_ALGORITHM = "HS256"

def hash_secret(secret: str) -> str:
    return pwd_context.hash(secret)

def verify_secret(secret: str, secret_hash: str) -> bool:
    return pwd_context.verify(secret, secret_hash)

def create_access_token(subject: str, *, purpose: str, expires_delta: timedelta | None = None) -> str:
    now = datetime.now(timezone.utc)
    ttl = expires_delta if expires_delta is not None else timedelta(minutes=settings.JWT_TTL_MINUTES)
    data = {"sub": subject, "purpose": purpose, "iat": int(now.timestamp()), "exp": int((now + ttl).timestamp())}
    return jwt.encode(data, settings.JWT_SECRET, algorithm=JWT_ALGORITHM)

def decode_access_token(token: str) -> dict:
    return jwt.decode(token, settings.JWT_SECRET, algorithms=[JWT_ALGORITHM])
