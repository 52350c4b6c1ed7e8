"""
Bearer token authentication against a JSON Web Key Set (JWKS).
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx
from fastapi import Request
from jose import ExpiredSignatureError, JWTError, jwt

from shared.errors import AuthenticationError
from shared.logging import get_logger


@dataclass(frozen=True)
class Caller:
    """Authenticated identity of a request."""

    uid: str
    email: Optional[str] = None
    issued_at: Optional[int] = None
    is_freelancer: bool = False
    claims: Dict[str, Any] = field(default_factory=dict, compare=False)


def extract_bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise AuthenticationError("No authorization token provided", {"reason": "NO_TOKEN"})

    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1].strip():
        raise AuthenticationError("Invalid authorization header format", {"reason": "INVALID_TOKEN"})
    return parts[1].strip()


def caller_from_claims(claims: Dict[str, Any]) -> Caller:
    """Build a `Caller` from verified token claims."""
    uid = claims.get("sub") or claims.get("uid")
    if not isinstance(uid, str) or not uid:
        raise AuthenticationError("Token missing subject claim", {"reason": "INVALID_TOKEN"})

    email = claims.get("email")
    issued_at = claims.get("iat")
    return Caller(
        uid=uid,
        email=email if isinstance(email, str) else None,
        issued_at=int(issued_at) if isinstance(issued_at, (int, float)) else None,
        is_freelancer=claims.get("is_freelancer") is True,
        claims=dict(claims),
    )


class JWKSAuthenticator:
    """Validates bearer tokens with keys fetched from a JWKS endpoint."""

    def __init__(
        self,
        jwks_url: str,
        audience: Optional[str] = None,
        issuer: Optional[str] = None,
        *,
        refresh_interval: int = 300,
        http_timeout: float = 5.0,
    ) -> None:
        self.jwks_url = jwks_url
        self.audience = audience
        self.issuer = issuer
        self.refresh_interval = refresh_interval
        self.logger = get_logger("authz.auth.jwks")

        self._keys: Optional[List[Dict[str, Any]]] = None
        self._fetched_at: float = 0.0
        self._lock = asyncio.Lock()
        self._client = httpx.AsyncClient(timeout=http_timeout)

    async def close(self) -> None:
        await self._client.aclose()

    async def authenticate(self, request: Request) -> Caller:
        """Authenticate the request and attach the caller to ``request.state``."""
        token = extract_bearer_token(request.headers.get("Authorization"))
        claims = await self.verify_token(token)
        caller = caller_from_claims(claims)

        request.state.caller = caller
        return caller

    async def verify_token(self, token: str) -> Dict[str, Any]:
        try:
            header = jwt.get_unverified_header(token)
        except JWTError as exc:
            raise AuthenticationError("Malformed token", {"reason": "INVALID_TOKEN"}) from exc

        kid = header.get("kid")
        if not isinstance(kid, str):
            raise AuthenticationError("Token header missing key id", {"reason": "INVALID_TOKEN"})

        key = await self._find_key(kid)
        if key is None:
            raise AuthenticationError("Signing key not found for token", {"kid": kid})

        try:
            return jwt.decode(
                token,
                key,
                algorithms=[key.get("alg", "RS256")],
                audience=self.audience,
                issuer=self.issuer,
                options={"verify_aud": self.audience is not None},
            )
        except ExpiredSignatureError as exc:
            raise AuthenticationError("Token expired", {"reason": "TOKEN_EXPIRED"}) from exc
        except JWTError as exc:
            self.logger.warning("Token validation failed", error=str(exc))
            raise AuthenticationError("Token validation failed", {"reason": "INVALID_TOKEN"}) from exc

    async def _find_key(self, kid: str) -> Optional[Dict[str, Any]]:
        await self._load_keys(force=False)
        key = self._match(kid)
        if key is None:
            # Signing keys may have rotated since the last fetch.
            await self._load_keys(force=True)
            key = self._match(kid)
        return key

    def _match(self, kid: str) -> Optional[Dict[str, Any]]:
        for key in self._keys or []:
            if key.get("kid") == kid:
                return key
        return None

    def _is_fresh(self) -> bool:
        return self._keys is not None and (time.time() - self._fetched_at) < self.refresh_interval

    async def _load_keys(self, *, force: bool) -> None:
        if not force and self._is_fresh():
            return

        async with self._lock:
            if not force and self._is_fresh():
                return

            try:
                response = await self._client.get(self.jwks_url)
                response.raise_for_status()
                keys = response.json().get("keys")
            except httpx.HTTPError as exc:
                self.logger.error("JWKS fetch failed", url=self.jwks_url, error=str(exc))
                raise AuthenticationError("Signing keys unavailable") from exc

            if not isinstance(keys, list):
                raise AuthenticationError("JWKS response missing 'keys' array")

            self._keys = keys
            self._fetched_at = time.time()
