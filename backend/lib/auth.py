"""
Authentication utilities for JWT validation
"""
import os
from typing import Optional
from fastapi import HTTPException, Header
from jose import JWTError, jwt
from dotenv import load_dotenv
from .supabase_client import get_supabase_client
from .logger import get_logger

load_dotenv()
load_dotenv('../.env')

logger = get_logger("backend.auth")

# Same secret Supabase signs access tokens with; optional
JWT_SECRET = os.getenv("SUPABASE_JWT_SECRET")
JWT_ALGORITHM = "HS256"
JWT_AUDIENCE = "authenticated"


def decode_access_token(token: str) -> dict:
    """
    Verify a Supabase access token locally.

    Raises:
        JWTError: If the signature, audience or expiry is invalid
    """
    return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM], audience=JWT_AUDIENCE)


async def get_current_user(authorization: Optional[str] = Header(None)):
    """
    Validate JWT token and return user info

    With SUPABASE_JWT_SECRET set the token is verified locally; otherwise
    Supabase is asked for the user behind it.

    Args:
        authorization: Bearer token from Authorization header

    Returns:
        dict: User information including id and email

    Raises:
        HTTPException: If token is invalid
    """
    if not authorization:
        raise HTTPException(status_code=401, detail="Authorization header required")

    if not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Invalid authorization header format")

    token = authorization.replace("Bearer ", "")

    if JWT_SECRET:
        try:
            claims = decode_access_token(token)
        except JWTError as e:
            logger.warning("Rejected access token", data={"error": str(e)})
            raise HTTPException(status_code=401, detail="Invalid or expired token")

        if not claims.get("sub"):
            raise HTTPException(status_code=401, detail="Token has no subject")

        return {
            "id": claims["sub"],
            "email": claims.get("email"),
            "role": claims.get("role", "authenticated"),
        }

    try:
        supabase = get_supabase_client()
        user_response = supabase.auth.get_user(token)

        if not user_response or not user_response.user:
            raise HTTPException(status_code=401, detail="Invalid or expired token")

        user = user_response.user
        return {
            "id": user.id,
            "email": user.email,
            "role": getattr(user, "role", None) or "authenticated",
        }

    except HTTPException:
        raise
    except Exception as e:
        logger.error("Auth error", error=e)
        raise HTTPException(status_code=401, detail="Could not validate credentials")
