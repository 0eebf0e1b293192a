from ntcli.auth.exchange import TokenExchangeClient
from ntcli.auth.manager import IdentityProvider, SessionState, TokenManager
from ntcli.auth.oauth import OAuthIdentityProvider

__all__ = [
    "IdentityProvider",
    "OAuthIdentityProvider",
    "SessionState",
    "TokenExchangeClient",
    "TokenManager",
]
