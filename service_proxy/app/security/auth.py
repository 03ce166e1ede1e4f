"""
Authentication guard for the proxy.

Two optional checks:
- Bearer token (REQUIRE_AUTH): the token is handed to a verifier that returns
  user info. Without an external verifier, a static token list is used.
- App token: when signature enforcement is off and PROXY_APP_TOKEN is set,
  callers must present it in the app token header.
"""

import hashlib
import hmac
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Sequence

from shared.config import ProxyConfig
from shared.errors import AuthError, ConfigurationError
from shared.logging import get_logger

TokenVerifier = Callable[[str], Awaitable[Dict[str, Any]]]


class StaticTokenVerifier:
    """Accepts any token from a fixed list."""

    def __init__(self, tokens: Sequence[str]):
        self._tokens = [t.encode("utf-8") for t in tokens]

    async def __call__(self, token: str) -> Dict[str, Any]:
        candidate = token.encode("utf-8")
        # No early exit: every entry is compared.
        matched = False
        for known in self._tokens:
            matched |= hmac.compare_digest(known, candidate)
        if not matched:
            raise AuthError("invalid_token")
        fingerprint = hashlib.sha256(candidate).hexdigest()[:12]
        return {"user_id": f"token-{fingerprint}", "auth_method": "static_token"}


class AuthGuard:
    """Authenticates inbound requests before any admission state is touched."""

    def __init__(self, config: ProxyConfig, token_verifier: Optional[TokenVerifier] = None):
        self.config = config
        self.logger = get_logger("proxy.auth")
        if token_verifier is None and config.auth_token_list:
            token_verifier = StaticTokenVerifier(config.auth_token_list)
        self.token_verifier = token_verifier

    async def authenticate(self, headers: Mapping[str, str]) -> Optional[Dict[str, Any]]:
        """Return user info for an authenticated caller, None when no check applies.

        ``headers`` keys are expected lower-case.
        """
        if self.config.require_auth:
            return await self._authenticate_bearer(headers)
        if self.config.app_token and not self.config.signature_enforced:
            self._check_app_token(headers)
        return None

    async def _authenticate_bearer(self, headers: Mapping[str, str]) -> Dict[str, Any]:
        auth_header = headers.get("authorization")
        if not auth_header or not auth_header.startswith("Bearer "):
            raise AuthError("missing_auth")

        if self.token_verifier is None:
            self.logger.error("token_verifier_missing")
            raise ConfigurationError("token verifier not configured")

        token = auth_header[7:].strip()
        try:
            user_info = await self.token_verifier(token)
        except AuthError:
            raise
        except ConfigurationError:
            raise
        except Exception as e:
            self.logger.warning("token_verification_failed", error=str(e))
            raise AuthError("invalid_token") from e

        self.logger.info("request_authenticated", user_id=user_info.get("user_id"))
        return user_info

    def _check_app_token(self, headers: Mapping[str, str]) -> None:
        presented = headers.get(self.config.app_token_header.lower())
        if not presented:
            raise AuthError("missing_auth")
        if not hmac.compare_digest(presented.encode("utf-8"), self.config.app_token.encode("utf-8")):
            raise AuthError("invalid_token")
