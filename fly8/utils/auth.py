"""
Authentication utilities - JWT decoding and role checks.

Tokens are issued by the platform's auth service; this engine only verifies them.
Payload shape: {"sub": <userId>, "role": "super_admin" | "agent" | ..., "exp": ...}
"""
import logging
from datetime import datetime, timedelta
from typing import Optional, Dict
from jose import ExpiredSignatureError, JWTError, jwt
from fastapi import HTTPException, status, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from fly8.config.settings import settings

logger = logging.getLogger(__name__)

# JWT Bearer token
security = HTTPBearer()

SUPER_ADMIN = "super_admin"
AGENT = "agent"

def create_access_token(data: Dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token"""
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)
    return encoded_jwt

def decode_access_token(token: str) -> Dict:
    """Decode and verify a JWT token"""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        return payload
    except ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "Token expired", "code": "TOKEN_EXPIRED"},
            headers={"WWW-Authenticate": "Bearer"},
        )
    except JWTError as e:
        logger.warning("JWT verification failed: %s", e)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "Could not validate credentials", "code": "INVALID_TOKEN"},
            headers={"WWW-Authenticate": "Bearer"},
        )

async def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security)) -> Dict:
    """Get current authenticated user from JWT token"""
    payload = decode_access_token(credentials.credentials)
    if not payload.get("sub") or not payload.get("role"):
        logger.warning("Rejected token without sub/role claims")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "Invalid authentication credentials", "code": "INVALID_TOKEN"},
        )
    return payload

def _require_role(current_user: Dict, role: str) -> Dict:
    if current_user.get("role") != role:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"error": "Insufficient permissions", "code": "FORBIDDEN"},
        )
    return current_user

async def require_super_admin(current_user: Dict = Depends(get_current_user)) -> Dict:
    """Dependency to require the super admin role"""
    return _require_role(current_user, SUPER_ADMIN)

async def require_agent(current_user: Dict = Depends(get_current_user)) -> Dict:
    """Dependency to require the agent role"""
    return _require_role(current_user, AGENT)
