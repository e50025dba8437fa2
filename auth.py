"""
Identity for CivicGuard

Credentials live in the `credentials` collection, apart from the public
`users` profile rows. Sign-in hands out an HS256 bearer token; sign-out
revokes the token's jti so it stops resolving to an identity.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from fastapi import Depends, Header, HTTPException
from jose import JWTError, jwt
from passlib.context import CryptContext

from config import Settings
from context import AppContext, get_context
from database import DuplicateRecordError
from schemas import User

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


class AuthError(Exception):
    """Sign-up or sign-in was refused."""


@dataclass(frozen=True)
class CurrentUser:
    id: str
    email: str
    token_id: Optional[str] = None
    expires_at: Optional[datetime] = None


def default_name(email: str) -> str:
    return email.split("@")[0] or "User"


def new_profile(user_id: str, email: str, **fields) -> User:
    return User(id=user_id, email=email, name=default_name(email), **fields)


def create_token(settings: Settings, user_id: str, email: str) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "email": email,
        "jti": uuid.uuid4().hex,
        "exp": now + timedelta(minutes=settings.jwt_expire_minutes),
        "iat": now,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_alg)


def resolve_token(ctx: AppContext, token: str) -> CurrentUser:
    """Decode a bearer token into an identity. Raises JWTError if unusable."""
    data = jwt.decode(token, ctx.settings.jwt_secret, algorithms=[ctx.settings.jwt_alg])
    if not data.get("sub"):
        raise JWTError("Token has no subject")
    jti = data.get("jti")
    if jti and ctx.store.find_one("revoked_tokens", {"_id": jti}):
        raise JWTError("Token has been revoked")
    exp = data.get("exp")
    return CurrentUser(
        id=data["sub"],
        email=data.get("email", ""),
        token_id=jti,
        expires_at=datetime.fromtimestamp(exp, timezone.utc) if exp else None,
    )


def ensure_profile(ctx: AppContext, user_id: str, email: str) -> None:
    """Create the public users row for an identity if it does not exist yet."""
    if ctx.store.find_one("users", {"_id": user_id}) is None:
        ctx.store.create_document("users", new_profile(user_id, email).model_dump(exclude={"created_at"}))
        logger.info("Created profile for %s", user_id)


def register(ctx: AppContext, email: str, password: str) -> Tuple[CurrentUser, str]:
    if ctx.store.find_one("credentials", {"email": email}):
        raise AuthError("Email already registered")
    user_id = str(uuid.uuid4())
    try:
        ctx.store.create_document("credentials", {
            "id": user_id,
            "email": email,
            "password_hash": pwd_context.hash(password),
        })
    except DuplicateRecordError as e:
        raise AuthError("Email already registered") from e
    ensure_profile(ctx, user_id, email)
    logger.info("Registered %s", user_id)
    return CurrentUser(id=user_id, email=email), create_token(ctx.settings, user_id, email)


def login(ctx: AppContext, email: str, password: str) -> Tuple[CurrentUser, str]:
    creds = ctx.store.find_one("credentials", {"email": email})
    if not creds or not pwd_context.verify(password, creds.get("password_hash", "")):
        raise AuthError("Invalid credentials")
    ensure_profile(ctx, creds["id"], email)
    return CurrentUser(id=creds["id"], email=email), create_token(ctx.settings, creds["id"], email)


def logout(ctx: AppContext, user: CurrentUser) -> None:
    if user.token_id:
        expires_at = user.expires_at or datetime.now(timezone.utc) + timedelta(minutes=ctx.settings.jwt_expire_minutes)
        # The TTL index compares against naive UTC
        ctx.store.upsert_document(
            "revoked_tokens", {"_id": user.token_id}, {"expires_at": expires_at.astimezone(timezone.utc).replace(tzinfo=None)}
        )
    logger.info("Signed out %s", user.id)


# ---------- Dependencies ----------

def _bearer(authorization: Optional[str]) -> str:
    scheme, token = authorization.split(" ", 1)
    if scheme.lower() != "bearer":
        raise ValueError("Invalid auth scheme")
    return token


def verify_token(
    authorization: Optional[str] = Header(None),
    ctx: AppContext = Depends(get_context),
) -> CurrentUser:
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing Authorization header")
    try:
        return resolve_token(ctx, _bearer(authorization))
    except (ValueError, JWTError):
        raise HTTPException(status_code=401, detail="Invalid or expired token")


def optional_user(
    authorization: Optional[str] = Header(None),
    ctx: AppContext = Depends(get_context),
) -> Optional[CurrentUser]:
    """Identity if a usable token was sent, else None."""
    if not authorization:
        return None
    try:
        return resolve_token(ctx, _bearer(authorization))
    except (ValueError, JWTError):
        return None
