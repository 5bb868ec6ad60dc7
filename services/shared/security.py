import os
import time
import uuid

from fastapi import Header, HTTPException, Depends
from jose import jwt, JWTError, ExpiredSignatureError

JWT_SECRET = os.getenv("JWT_SECRET")
if not JWT_SECRET:
    raise RuntimeError("JWT_SECRET is not set")
ALGO = "HS256"

JWT_TTL_SECONDS = int(os.getenv("JWT_TTL_SECONDS", "86400"))

# Optional future-proofing
JWT_ISSUER = os.getenv("JWT_ISSUER")
JWT_AUDIENCE = os.getenv("JWT_AUDIENCE")


def make_access_token(user_id: uuid.UUID, email: str, ttl_seconds: int | None = None) -> str:
    now = int(time.time())
    payload = {
        "sub": str(user_id),
        "email": email,
        "iat": now,
        "exp": now + (ttl_seconds if ttl_seconds is not None else JWT_TTL_SECONDS),
        "typ": "access",
    }
    if JWT_ISSUER:
        payload["iss"] = JWT_ISSUER
    if JWT_AUDIENCE:
        payload["aud"] = JWT_AUDIENCE

    return jwt.encode(payload, JWT_SECRET, algorithm=ALGO)


def decode_access_token(token: str) -> dict:
    options = {"verify_aud": bool(JWT_AUDIENCE)}
    claims = jwt.decode(
        token,
        JWT_SECRET,
        algorithms=[ALGO],
        audience=JWT_AUDIENCE,
        issuer=JWT_ISSUER,
        options=options,
    )
    if claims.get("typ") != "access":
        raise JWTError("Invalid token type")
    return claims


def require_user(authorization: str = Header(default=None)) -> dict:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing bearer token")

    token = authorization.split(" ", 1)[1].strip()
    if not token:
        raise HTTPException(status_code=401, detail="Missing bearer token")

    try:
        claims = decode_access_token(token)
    except ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")

    # Attach raw token so downstream calls can forward it
    claims["raw_token"] = token
    return claims


def require_user_id(claims: dict = Depends(require_user)) -> uuid.UUID:
    try:
        return uuid.UUID(claims["sub"])
    except (KeyError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid token claims")
