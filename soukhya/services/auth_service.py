"""
Authentication Service
Validates staff bearer tokens issued by the authentication service
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from soukhya.config import settings
from soukhya.database.models import AuditLog

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


@dataclass
class StaffClaims:
    """Identity carried by a staff token"""
    id: Any
    role: Optional[str] = None
    email: Optional[str] = None


class AuthService:
    """Token encoding/decoding against the shared issuer and audience"""

    def create_access_token(self, data: dict, expires_delta: timedelta = None) -> str:
        """
        Create a JWT access token with this service's issuer and audience.

        Production tokens come from the staff auth service; this is for local
        runs and tests.
        """
        to_encode = data.copy()
        expire = datetime.utcnow() + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
        to_encode.update({
            "exp": expire,
            "iss": settings.JWT_ISSUER,
            "aud": settings.JWT_AUDIENCE,
        })
        return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)

    def decode_token(self, token: str) -> Optional[Dict[str, Any]]:
        """Decode and validate a JWT token"""
        try:
            return jwt.decode(
                token,
                settings.JWT_SECRET_KEY,
                algorithms=[settings.JWT_ALGORITHM],
                audience=settings.JWT_AUDIENCE,
                issuer=settings.JWT_ISSUER,
            )
        except JWTError as e:
            logger.info(f"Rejected token: {e}")
            return None

    def get_claims(self, request: Request, credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[StaffClaims]:
        credentials_exception = HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

        if not credentials:
            if settings.REQUIRE_AUTH:
                raise credentials_exception
            return None

        payload = self.decode_token(credentials.credentials)
        if payload is None or payload.get("id") is None:
            raise credentials_exception

        claims = StaffClaims(id=payload["id"], role=payload.get("role"), email=payload.get("email"))
        # Attach to request for audit logging
        request.state.claims = claims
        return claims


# Global auth service instance
auth_service = AuthService()


def get_current_claims(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> Optional[StaffClaims]:
    """FastAPI dependency: staff claims, or None when auth is optional and no token was sent"""
    return auth_service.get_claims(request, credentials)


class AuditService:
    """Audit trail of patient record changes"""

    @staticmethod
    def log(
        db: Session,
        action: str,
        resource_type: str,
        resource_id=None,
        description: str = None,
        new_values: dict = None,
        claims: StaffClaims = None,
        request: Request = None,
        success: bool = True
    ) -> AuditLog:
        """
        Add an audit entry to the current transaction.

        The entry commits or rolls back together with the change it describes.
        """
        client = getattr(request, "client", None) if request else None
        log_entry = AuditLog(
            user_id=str(claims.id) if claims else None,
            user_email=claims.email if claims else None,
            user_role=claims.role if claims else "system",
            ip_address=client.host if client else None,
            user_agent=request.headers.get("user-agent", "")[:500] if request else None,
            action=action,
            resource_type=resource_type,
            resource_id=str(resource_id) if resource_id is not None else None,
            description=description,
            new_values=new_values,
            success=success,
        )
        db.add(log_entry)
        return log_entry


audit_service = AuditService()
