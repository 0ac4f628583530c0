import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import ExpiredSignatureError, JWTError, jwt
from jose.exceptions import JWTClaimsError
from passlib.context import CryptContext
from starlette.concurrency import run_in_threadpool

import database
from config import Settings, settings
from errors import (
    ConflictError,
    TokenExpiredError,
    TokenMalformedError,
    TokenNotYetValidError,
    TokenVerificationError,
)
from schemas import RegisterRequest, User

logger = logging.getLogger(__name__)

ACCESS_TOKEN_TTL = timedelta(hours=1)
ACCESS_TOKEN_EXPIRES_IN = "1h"
TOKEN_CLAIMS = ("id", "email", "name", "role")

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__default_rounds=10)


# Utilities

def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, stored: str) -> bool:
    try:
        return pwd_context.verify(password, stored)
    except ValueError:
        # stored value is not a hash passlib recognises
        return False


def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    return {key: user.get(key) for key in TOKEN_CLAIMS}


def create_access_token(user: Dict[str, Any], expires_delta: timedelta = ACCESS_TOKEN_TTL) -> str:
    now = datetime.now(timezone.utc)
    to_encode = {**public_user(user), "iat": now, "exp": now + expires_delta}
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def _not_yet_valid(token: str) -> bool:
    nbf = jwt.get_unverified_claims(token).get("nbf")
    return isinstance(nbf, (int, float)) and nbf > time.time()


def verify_token(token: str) -> Dict[str, Any]:
    """Decode ``token`` and return its claims.

    Raises TokenExpiredError, TokenNotYetValidError or TokenMalformedError
    for those specific cases and TokenVerificationError for anything else.
    """
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except ExpiredSignatureError as exc:
        raise TokenExpiredError("Token expired") from exc
    except JWTClaimsError as exc:
        if _not_yet_valid(token):
            raise TokenNotYetValidError("Token not valid yet") from exc
        raise TokenVerificationError("Could not verify access token") from exc
    except JWTError as exc:
        raise TokenMalformedError("Token has an invalid format or signature") from exc
    except Exception as exc:
        raise TokenVerificationError("Could not verify access token") from exc


# Auth flow

async def validate_credentials(db, email: str, password: str) -> Optional[Dict[str, Any]]:
    """Check ``email``/``password`` against the users collection.

    Returns ``{"user": ..., "token": ...}`` on success and None for any
    credential mismatch. Storage failures propagate as UpstreamError.
    """
    user = await database.find_credentials(db, email)
    if user is None:
        logger.warning("Failed login: user not found - %s", email)
        return None

    hashed = user.pop("password_hash", None)
    if not hashed:
        logger.warning("Failed login: user has no password set - %s", email)
        return None

    if not await run_in_threadpool(verify_password, password, hashed):
        logger.warning("Failed login: wrong password - %s", email)
        return None

    return {"user": user, "token": create_access_token(user)}


async def register_user(db, payload: RegisterRequest) -> Dict[str, Any]:
    if await database.email_exists(db, payload.email):
        raise ConflictError("A user with this email already exists")
    hashed = await run_in_threadpool(hash_password, payload.password)
    user = User(name=payload.name, email=payload.email, password_hash=hashed, role=payload.role)
    user_id = await database.create_document(db, database.USERS, user)
    logger.info("Registered user %s (%s)", payload.email, payload.role)
    return await database.get_document(db, database.USERS, user_id, database.USER_DEFAULTS)


async def ensure_default_admin(db, config: Settings) -> None:
    if not (config.default_admin_email and config.default_admin_password):
        return
    if await database.email_exists(db, config.default_admin_email):
        return
    admin = User(
        name=config.default_admin_name,
        email=config.default_admin_email,
        password_hash=await run_in_threadpool(hash_password, config.default_admin_password),
        role="admin",
    )
    await database.create_document(db, database.USERS, admin)
    logger.info("Seeded default admin %s", config.default_admin_email)
