"""
Password hashing and JWT access tokens for staff accounts.
"""
from passlib.context import CryptContext
import jwt
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional
from sqlalchemy.orm import Session
import logging
import secrets
import os

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "480"))
SECRET_KEY_FILE = Path(os.getenv("SECRET_KEY_FILE", Path(__file__).resolve().parent / ".secret_key"))


def _build_pwd_context() -> CryptContext:
    # Some bcrypt releases fail passlib's backend self-test
    try:
        context = CryptContext(schemes=["bcrypt"], deprecated="auto")
        context.hash("self-test")
        return context
    except Exception as e:
        logger.warning("bcrypt backend unusable (%s), hashing with pbkdf2_sha256", e)
        return CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


pwd_context = _build_pwd_context()


def load_or_create_secret_key(key_file: Path = SECRET_KEY_FILE) -> str:
    """SECRET_KEY from the environment, else the key stored next to this module."""
    env_key = os.getenv("SECRET_KEY")
    if env_key:
        return env_key

    if key_file.is_file():
        try:
            stored = key_file.read_text(encoding="utf-8").strip()
        except UnicodeDecodeError:
            stored = ""
        if stored:
            return stored
        logger.warning("Secret key file %s is empty or unreadable, replacing it", key_file)

    new_key = secrets.token_urlsafe(32)
    key_file.write_text(new_key, encoding="utf-8")
    if os.name != "nt":
        key_file.chmod(0o600)
    logger.info("Generated a new secret key in %s", key_file)
    return new_key


SECRET_KEY = load_or_create_secret_key()


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


def authenticate_user(db: Session, username: str, password: str):
    from models import User
    user = db.query(User).filter(User.username == username).first()
    if user is None or not verify_password(password, user.password):
        return None
    return user


def create_access_token(data: dict, expires_minutes: int = ACCESS_TOKEN_EXPIRE_MINUTES) -> str:
    now = datetime.now(timezone.utc)
    claims = dict(data, iat=now, exp=now + timedelta(minutes=expires_minutes))
    return jwt.encode(claims, SECRET_KEY, algorithm=ALGORITHM)


def create_user_token(user) -> str:
    """Access token carrying the username and role name of ``user``."""
    return create_access_token({"sub": user.username, "role": user.role.name})


def verify_token(token: str) -> Optional[dict]:
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        logger.debug("Rejected expired token")
    except jwt.InvalidTokenError as e:
        logger.debug("Rejected invalid token: %s", e)
    return None
