"""Account access tokens

Tokens are `<account_id>.<signature>` where the signature is an HMAC-SHA256 of
the account id. They identify the caller to the API; issuing and storing them
on the client is left to the frontend.
"""
import base64
import hmac
import hashlib
from typing import Optional

from tlyt.core.config import settings


def _sign(account_id: str, secret: str) -> str:
    signature = hmac.new(secret.encode(), account_id.encode(), hashlib.sha256).digest()
    return base64.urlsafe_b64encode(signature).decode().rstrip('=')


def generate_account_token(account_id: str) -> str:
    """Generate a signed token for an account

    Raises:
        ValueError: If ACCOUNT_TOKEN_SECRET is not set
    """
    secret = settings.ACCOUNT_TOKEN_SECRET
    if not secret:
        raise ValueError("ACCOUNT_TOKEN_SECRET environment variable is required")
    return f"{account_id}.{_sign(account_id, secret)}"


def verify_account_token(token: str) -> Optional[str]:
    """Return the account id a token was issued for, or None if it is invalid"""
    secret = settings.ACCOUNT_TOKEN_SECRET
    if not token or not secret:
        return None

    try:
        account_id, signature = token.rsplit('.', 1)
    except ValueError:
        return None
    if not account_id:
        return None

    # Constant-time comparison
    if not hmac.compare_digest(signature, _sign(account_id, secret)):
        return None
    return account_id
