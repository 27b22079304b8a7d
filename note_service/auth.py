"""
auth.py — API Credentials for the Marketplace and the Inventory Service

    • TokenStore: persists tokens per provider in the `oauth_tokens` table
    • MeliAuth: OAuth code exchange and refresh for the marketplace API
    • ZnubeTokenAuth: httpx auth flow that sends the inventory token and keeps
      the rotated value the inventory service returns
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import httpx
import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncEngine

from .config import Settings
from .db import oauth_tokens

log = logging.getLogger(__name__)

MELI_PROVIDER = "meli"
ZNUBE_PROVIDER = "znube"
ZNUBE_TOKEN_HEADER = "zNube-token"

# Margin subtracted from expires_in so a token is never used at its edge.
_EXPIRY_MARGIN = timedelta(seconds=60)


class TokenUnavailableError(RuntimeError):
    """Raised when no usable token exists and none can be obtained."""


@dataclass(frozen=True)
class StoredToken:
    access_token: Optional[str]
    expires_at: Optional[datetime]
    refresh_token: Optional[str]

    def is_valid(self, now: datetime) -> bool:
        return bool(self.access_token) and self.expires_at is not None and self.expires_at > now


class TokenStore:
    def __init__(self, engine: AsyncEngine):
        self._engine = engine

    async def read(self, provider: str) -> Optional[StoredToken]:
        async with self._engine.connect() as conn:
            result = await conn.execute(sa.select(oauth_tokens).where(oauth_tokens.c.provider == provider))
            row = result.mappings().first()
        if row is None:
            return None
        expires_at = row["access_token_expires_at"]
        # SQLite hands back naive datetimes; everything is stored in UTC
        if expires_at is not None and expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return StoredToken(row["access_token"], expires_at, row["refresh_token"])

    async def write(self, provider: str, access_token: Optional[str],
                    expires_at: Optional[datetime] = None, refresh_token: Optional[str] = None):
        values = {
            "access_token": access_token,
            "access_token_expires_at": expires_at,
            "refresh_token": refresh_token,
        }
        async with self._engine.begin() as conn:
            result = await conn.execute(
                sa.update(oauth_tokens).where(oauth_tokens.c.provider == provider).values(**values)
            )
            if result.rowcount == 0:
                await conn.execute(sa.insert(oauth_tokens).values(provider=provider, **values))


class MeliAuth:
    """
    Provides valid access tokens for the marketplace API.

    Args:
        store (TokenStore): Persistent token storage.
        http (httpx.AsyncClient): Client whose base URL is the marketplace API.
        settings (Settings): OAuth application credentials.
    """

    def __init__(self, store: TokenStore, http: httpx.AsyncClient, settings: Settings):
        self._store = store
        self._http = http
        self._settings = settings

    def _credentials(self):
        if not self._settings.meli_client_id or not self._settings.meli_client_secret:
            raise TokenUnavailableError("Faltan MELI_CLIENT_ID / MELI_CLIENT_SECRET.")
        return self._settings.meli_client_id, self._settings.meli_client_secret

    async def _request_token(self, form: dict) -> dict:
        response = await self._http.post("/oauth/token", data=form)
        response.raise_for_status()
        return response.json()

    async def _save(self, payload: dict, previous_refresh: Optional[str] = None) -> str:
        access = payload["access_token"]
        refresh = payload.get("refresh_token") or previous_refresh
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=int(payload["expires_in"])) - _EXPIRY_MARGIN
        await self._store.write(MELI_PROVIDER, access, expires_at, refresh)
        return access

    async def exchange_code(self, code: str) -> str:
        """
        Exchanges an OAuth authorization code for tokens and stores them.

        Raises:
            TokenUnavailableError: If the app credentials are not configured.
            httpx.HTTPStatusError: If the marketplace rejects the code.
        """
        client_id, client_secret = self._credentials()
        payload = await self._request_token({
            "grant_type": "authorization_code",
            "client_id": client_id,
            "client_secret": client_secret,
            "code": code,
            "redirect_uri": self._settings.meli_redirect_uri or "",
        })
        log.info("Tokens de Mercado Libre obtenidos por código de autorización.")
        return await self._save(payload)

    async def get_valid_access_token(self) -> str:
        """
        Returns the stored access token, refreshing it first when expired.

        Raises:
            TokenUnavailableError: If there is no refresh token to fall back on.
            httpx.HTTPStatusError: If the refresh request fails.
        """
        stored = await self._store.read(MELI_PROVIDER)
        if stored is not None and stored.is_valid(datetime.now(timezone.utc)):
            return stored.access_token
        if stored is None or not stored.refresh_token:
            raise TokenUnavailableError("No hay tokens disponibles para refrescar.")

        client_id, client_secret = self._credentials()
        payload = await self._request_token({
            "grant_type": "refresh_token",
            "client_id": client_id,
            "client_secret": client_secret,
            "refresh_token": stored.refresh_token,
        })
        log.info("Access token de Mercado Libre refrescado.")
        return await self._save(payload, previous_refresh=stored.refresh_token)


class ZnubeTokenAuth(httpx.Auth):
    """
    Sends the inventory token on every request and persists the new token
    whenever the inventory service rotates it in a response header.
    """

    def __init__(self, store: TokenStore, fallback_token: Optional[str] = None):
        self._store = store
        self._fallback = fallback_token

    async def _current_token(self) -> str:
        stored = await self._store.read(ZNUBE_PROVIDER)
        token = stored.access_token if stored is not None else None
        token = token or self._fallback
        if not token:
            raise TokenUnavailableError("Token de inventario no disponible.")
        return token

    async def async_auth_flow(self, request):
        token = await self._current_token()
        request.headers[ZNUBE_TOKEN_HEADER] = token
        response = yield request

        rotated = response.headers.get(ZNUBE_TOKEN_HEADER)
        if rotated and rotated != token:
            await self._store.write(ZNUBE_PROVIDER, rotated)
            log.info("Token de inventario rotado y guardado.")
