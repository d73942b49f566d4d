import uuid
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError
from pydantic import BaseModel
from leadflow.core.config import settings

http_bearer = HTTPBearer(auto_error=False)

class Principal(BaseModel):
    """The caller: an agent or an integration acting inside one organization."""
    user_id: uuid.UUID
    organization_id: uuid.UUID
    roles: list[str] = []
    scopes: list[str] = []

    def allows(self, *needed: str) -> bool:
        if "*" in self.scopes:
            return True
        granted = set(self.scopes)
        # "routing:*" grants every routing scope
        return all(s in granted or f"{s.split(':', 1)[0]}:*" in granted for s in needed)

def _decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG], audience=settings.REQUIRED_AUDIENCE)
    except JWTError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=f"Invalid token: {e}")

def _scopes(data: dict) -> list[str]:
    # integrations send OAuth style "scope": "leads:write routing:read"
    scopes = data.get("scopes")
    if scopes is None:
        scopes = (data.get("scope") or "").split()
    return list(scopes)

def principal_from_claims(data: dict) -> Principal:
    try:
        user_id = uuid.UUID(str(data.get("sub") or data.get("user_id")))
        organization_id = uuid.UUID(str(data.get("organization_id") or settings.DEFAULT_ORG_ID))
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token subject or organization is not a UUID")
    return Principal(user_id=user_id, organization_id=organization_id, roles=data.get("roles", []), scopes=_scopes(data))

async def get_principal(creds: HTTPAuthorizationCredentials | None = Depends(http_bearer)) -> Principal:
    # local runs accept anonymous calls as an admin of the default organization
    if creds is None and settings.ENV == "local":
        return Principal(user_id=uuid.uuid4(), organization_id=uuid.UUID(settings.DEFAULT_ORG_ID), roles=["admin"], scopes=["*"])
    if creds is None:
        raise HTTPException(status_code=401, detail="Missing token")
    return principal_from_claims(_decode_token(creds.credentials))

def require_scopes(*needed: str):
    def dep(principal: Principal = Depends(get_principal)) -> Principal:
        if not principal.allows(*needed):
            raise HTTPException(status_code=403, detail="Insufficient scopes")
        return principal
    return dep
