"""
OEE Monitor - JWT Token Handler

This module handles JWT access token creation and validation for the OEE
Monitor API. Tokens are issued by the plant's identity service; the
create helpers exist for service accounts and tests.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Union

import jwt
import structlog

from oee_monitor.config import settings

logger = structlog.get_logger()


class JWTError(Exception):
    """Custom JWT error class."""
    pass


class JWTManager:
    """JWT token manager for authentication."""

    def __init__(
        self,
        secret_key: Optional[str] = None,
        algorithm: Optional[str] = None,
        access_token_expire_minutes: Optional[int] = None
    ):
        self.secret_key = secret_key or settings.SECRET_KEY
        self.algorithm = algorithm or settings.ALGORITHM
        self.access_token_expire_minutes = access_token_expire_minutes or settings.ACCESS_TOKEN_EXPIRE_MINUTES

    def create_access_token(
        self,
        subject: Union[str, int],
        expires_delta: Optional[timedelta] = None,
        additional_claims: Optional[Dict[str, Any]] = None
    ) -> str:
        """Create a new access token."""
        now = datetime.now(timezone.utc)
        expire = now + (expires_delta or timedelta(minutes=self.access_token_expire_minutes))

        to_encode = {
            "sub": str(subject),
            "exp": expire,
            "iat": now,
            "type": "access"
        }

        if additional_claims:
            to_encode.update(additional_claims)

        try:
            encoded_jwt = jwt.encode(to_encode, self.secret_key, algorithm=self.algorithm)
            logger.info("Access token created", user_id=str(subject), expires_at=expire.isoformat())
            return encoded_jwt
        except Exception as e:
            logger.error("Failed to create access token", error=str(e), user_id=str(subject))
            raise JWTError("Failed to create access token")

    def verify_token(self, token: str, token_type: str = "access") -> Dict[str, Any]:
        """Verify and decode a JWT token; expiry is enforced by PyJWT."""
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            logger.warning("Token has expired", token_type=token_type)
            raise JWTError("Token has expired")
        except jwt.InvalidTokenError as e:
            logger.warning("Invalid token", error=str(e), token_type=token_type)
            raise JWTError("Invalid token")

        if payload.get("type") != token_type:
            raise JWTError(f"Invalid token type. Expected {token_type}")

        logger.debug("Token verified successfully", user_id=payload.get("sub"), token_type=token_type)
        return payload


jwt_manager = JWTManager()


def create_user_token(user_id: str, role: str, expires_delta: Optional[timedelta] = None) -> str:
    """Access token carrying the claims the permission layer reads."""
    return jwt_manager.create_access_token(
        subject=user_id,
        expires_delta=expires_delta,
        additional_claims={"user_id": user_id, "role": role}
    )


def verify_access_token(token: str) -> Dict[str, Any]:
    """Verify an access token."""
    return jwt_manager.verify_token(token, token_type="access")
