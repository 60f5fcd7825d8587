# meal_audit/auth.py
"""
API Key authentication dependency
"""

import secrets

from fastapi import Depends, Header, HTTPException, status

from meal_audit.config import Settings, get_settings


async def verify_api_key(
    x_api_key: str = Header(..., description="API key for authentication"),
    settings: Settings = Depends(get_settings),
):
    if not settings.api_proxy_secret:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="API_PROXY_SECRET is not configured",
        )
    if not secrets.compare_digest(x_api_key, settings.api_proxy_secret):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
        )
    return x_api_key
