"""JWT Token Service."""

from datetime import datetime, timedelta
from typing import Any

from jose import JWTError, jwt

from app.config import get_settings

BLOB_SCOPE = "blob"


class JWTService:
    """Handles identity tokens and signed blob access tokens."""

    def __init__(self) -> None:
        settings = get_settings()
        self.secret_key = settings.JWT_SECRET_KEY
        self.algorithm = settings.JWT_ALGORITHM
        self.expire_minutes = settings.JWT_EXPIRE_MINUTES

    def create_token(self, user_id: int, email: str, display_name: str) -> str:
        """Create an identity token for the given user."""
        expire = datetime.utcnow() + timedelta(minutes=self.expire_minutes)
        payload = {
            "sub": str(user_id),
            "email": email,
            "displayName": display_name,
            "exp": expire,
        }
        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def decode_token(self, token: str) -> dict[str, Any] | None:
        """Decode and validate an identity token. Returns None if invalid."""
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except JWTError:
            return None
        if payload.get("scope") == BLOB_SCOPE or "sub" not in payload:
            return None
        return payload

    def create_blob_token(self, path: str, ttl_seconds: int) -> str:
        """Sign a short-lived token granting read access to one blob path."""
        expire = datetime.utcnow() + timedelta(seconds=ttl_seconds)
        payload = {"scope": BLOB_SCOPE, "path": path, "exp": expire}
        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def verify_blob_token(self, token: str, path: str) -> bool:
        """Check a blob token is unexpired and was issued for ``path``."""
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except JWTError:
            return False
        return payload.get("scope") == BLOB_SCOPE and payload.get("path") == path


_jwt_service: JWTService | None = None


def get_jwt_service() -> JWTService:
    """Get singleton JWT service instance."""
    global _jwt_service
    if _jwt_service is None:
        _jwt_service = JWTService()
    return _jwt_service
