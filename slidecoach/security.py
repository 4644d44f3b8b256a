from typing import Mapping, Optional

from .errors import AuthenticationError

# 25 MB upload limit for practice recordings (adjust if needed)
MAX_FILE_SIZE_BYTES = 25 * 1024 * 1024

MASK = "••••••••"


def mask_api_key(s: str) -> str:
    if not s:
        return s
    if len(s) <= 8:
        return MASK
    return s[:4] + MASK + s[-2:]


def safe_len(s: Optional[str]) -> int:
    return len(s or "")


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def identify_caller(authorization: Optional[str], tokens: Mapping[str, str]) -> Optional[str]:
    """Return the user id bound to the request's bearer token, or ``None``."""
    token = bearer_token(authorization)
    if token is None:
        return None
    return tokens.get(token)


def require_caller(caller_id: Optional[str]) -> str:
    if not caller_id:
        raise AuthenticationError("User authentication failed.")
    return caller_id
