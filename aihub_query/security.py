from fastapi import HTTPException, Security, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
import jwt

from aihub_query.common import epoch_ms
from aihub_query.config import get_jwt_verify_key

ALGORITHM = "EdDSA"

# Security scheme
bearer_scheme = HTTPBearer()


def verify_jwt(token: str, public_key: str | bytes) -> str:
    """Return the user id carried in the token's `sub` claim."""
    try:
        payload = jwt.decode(
            token,
            public_key,
            algorithms=[ALGORITHM],
            options={"require": ["exp", "sub"]},
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="token expired"
        )
    except jwt.InvalidTokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid token"
        )
    user = payload.get("sub")
    if user is None or str(user) == "":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid token"
        )
    return str(user)


def sign_jwt(user: str, private_key: str | bytes, ttl_secs: int = 3600 * 7) -> str:
    now = epoch_ms() // 1000
    payload = {"exp": now + ttl_secs, "iat": now, "sub": user}
    return jwt.encode(payload, private_key, algorithm=ALGORITHM)


async def get_caller(
    credentials: HTTPAuthorizationCredentials = Security(bearer_scheme),
) -> str:
    public_key = get_jwt_verify_key()
    if not public_key:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="token verification is not configured",
        )
    return verify_jwt(credentials.credentials, public_key)
