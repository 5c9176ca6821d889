"""Security dependencies"""
import logging
from typing import Optional
from fastapi import Header, HTTPException, Request

from tlyt.utils.account_tokens import verify_account_token

security_logger = logging.getLogger("security")


def require_account(
    request: Request,
    x_account_token: Optional[str] = Header(None, alias="X-Account-Token")
) -> str:
    """Dependency: Require a valid account token, return account_id"""
    if not x_account_token:
        raise HTTPException(401, "Missing account token")

    account_id = verify_account_token(x_account_token)
    if not account_id:
        security_logger.warning(
            f"Invalid account token - "
            f"IP: {request.client.host if request.client else 'unknown'}, "
            f"Path: {request.url.path}"
        )
        raise HTTPException(401, "Invalid account token")

    return account_id


def get_client_identifier(request: Request) -> str:
    """Get a unique identifier for rate limiting"""
    token = request.headers.get("X-Account-Token")
    account_id = verify_account_token(token) if token else None
    if account_id:
        return f"account:{account_id}"

    # Fallback to IP address
    client_ip = request.headers.get("X-Forwarded-For", "").split(",")[0].strip()
    if not client_ip:
        client_ip = request.client.host if request.client else "unknown"
    return f"ip:{client_ip}"
