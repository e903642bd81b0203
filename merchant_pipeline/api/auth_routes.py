from fastapi import APIRouter, Depends, status
from pydantic import BaseModel

from merchant_pipeline.core.auth_dependencies import AgentIdentity, get_current_agent
from merchant_pipeline.core.security import create_access_token

router = APIRouter(
    prefix="/auth",
    tags=["Authentication"]
)


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


# Returns the identity resolved from the caller's bearer token
@router.get("/me", response_model=AgentIdentity, status_code=status.HTTP_200_OK)
async def get_current_agent_info(agent: AgentIdentity = Depends(get_current_agent)) -> AgentIdentity:
    return agent


# Issues a fresh access token for the authenticated agent
@router.post("/refresh", response_model=Token, status_code=status.HTTP_200_OK)
async def refresh_token(agent: AgentIdentity = Depends(get_current_agent)) -> Token:
    claims = {"sub": agent.email}
    if agent.name:
        claims["name"] = agent.name
    return Token(access_token=create_access_token(claims))
