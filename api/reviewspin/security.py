import bcrypt
from fastapi import Header, HTTPException, status
from jose import jwt, JWTError
from .config import settings

ALGO = "HS256"


def hash_tenant_token(token: str) -> str:
    return bcrypt.hashpw(token.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_tenant_token(token: str | None, token_hash: str | None) -> bool:
    """Constant-time check of a venue staff token against its stored bcrypt hash."""
    if not token or not token_hash:
        return False
    try:
        return bcrypt.checkpw(token.encode("utf-8"), token_hash.encode("utf-8"))
    except ValueError:
        # malformed hash in storage
        return False


def require_operator(authorization: str | None = Header(default=None, alias="Authorization")):
    """Platform operator bearer JWT; issued by the auth service, only verified here."""
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")
    token = authorization.split(" ", 1)[1].strip()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[ALGO])
    except JWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    if payload.get("role") != "operator":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Operator role required")
    return payload
