from fastapi import Depends, HTTPException, status, Request
from fastapi.security import OAuth2PasswordBearer
from pydantic import BaseModel
from typing import Optional
from merchant_pipeline.core.security import decode_token, is_admin_email
import logging

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/refresh")


class AgentIdentity(BaseModel):
    email: str
    name: Optional[str] = None
    is_admin: bool = False


# Extracts and validates the bearer token to identify the calling agent
async def get_current_agent(request: Request, token: str = Depends(oauth2_scheme)) -> AgentIdentity:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    payload = decode_token(token)
    if payload is None:
        logger.warning("Token validation failed")
        raise credentials_exception

    email = payload.get("sub")
    if not email:
        logger.debug("No 'sub' field in token payload.")
        raise credentials_exception

    email = email.strip().lower()
    identity = AgentIdentity(email=email, name=payload.get("name"), is_admin=is_admin_email(email))
    logger.debug(f"Authenticated agent {email} on {request.url.path} (admin={identity.is_admin})")
    return identity


# Validates that the current agent has admin privileges
async def get_admin_agent(agent: AgentIdentity = Depends(get_current_agent)) -> AgentIdentity:
    if not agent.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return agent
