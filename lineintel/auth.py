"""
API key authentication for the HTTP surface.

Keys come from API_KEY_USER1..API_KEY_USER5 and map to user1..user5.
Users named in ADMIN_USERS (comma-separated, default "user1") may call
the /admin endpoints.
"""

import os
from functools import lru_cache
from typing import Dict, FrozenSet

from dotenv import load_dotenv
from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyHeader

load_dotenv()

API_KEY_HEADER = APIKeyHeader(name="X-API-Key", auto_error=False)

MAX_USERS = 5
DEFAULT_ADMIN = "user1"


@lru_cache(maxsize=1)
def get_valid_api_keys() -> Dict[str, str]:
    """
    Map of API key to user id, read on first use.

    Scripts and tests that never touch the HTTP layer need no keys.
    """
    keys = {}
    for i in range(1, MAX_USERS + 1):
        key = os.getenv(f"API_KEY_USER{i}")
        if key:
            keys[key] = f"user{i}"

    if not keys:
        if os.getenv("ENVIRONMENT") == "development":
            keys["dev-key-insecure"] = DEFAULT_ADMIN
        else:
            raise ValueError("No API keys configured! Set API_KEY_USER1 in environment")
    return keys


@lru_cache(maxsize=1)
def admin_users() -> FrozenSet[str]:
    raw = os.getenv("ADMIN_USERS", DEFAULT_ADMIN)
    return frozenset(u.strip().lower() for u in raw.split(",") if u.strip())


async def verify_api_key(api_key: str = Security(API_KEY_HEADER)) -> str:
    """Resolve the X-API-Key header to a user id, 401 when missing or unknown."""
    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="API key required. Include 'X-API-Key' header.",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    user = get_valid_api_keys().get(api_key)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "ApiKey"},
        )
    return user


async def verify_admin_api_key(user: str = Security(verify_api_key)) -> str:
    if user not in admin_users():
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return user
