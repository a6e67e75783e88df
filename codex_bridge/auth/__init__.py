"""Authentication: backend credential lifecycle and inbound caller checks."""

from .app_key import AppKeyValidator, extract_caller_secret
from .manager import AuthManager
from .oauth import (
    AuthorizationDetails,
    OAuthClient,
    PkcePair,
    extract_account_id,
    generate_pkce_pair,
    generate_state,
)
from .token_store import TokenSet, TokenStore, is_expired

__all__ = [
    "AppKeyValidator",
    "AuthManager",
    "AuthorizationDetails",
    "OAuthClient",
    "PkcePair",
    "TokenSet",
    "TokenStore",
    "extract_account_id",
    "extract_caller_secret",
    "generate_pkce_pair",
    "generate_state",
    "is_expired",
]
