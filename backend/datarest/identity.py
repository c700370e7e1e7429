import logging
import os
from dataclasses import dataclass
from typing import Protocol

import httpx
import jwt

from .errors import IdentityProviderError, Unauthenticated

logger = logging.getLogger(__name__)


class IdentityProvider(Protocol):
    """Bearerトークン → 所有者ID の解決（外部の認証基盤との境界）。"""

    def resolve(self, token: str) -> str:  # pragma: no cover (実装側で検証する)
        """token を検証し、所有者ID（user_id）を返す。拒否時は Unauthenticated。"""


@dataclass(frozen=True)
class IdentityConfig:
    provider: str
    jwt_secret: str | None
    jwt_audience: str | None
    api_base_url: str | None
    api_key: str | None
    timeout_seconds: float

    @staticmethod
    def from_env() -> "IdentityConfig":
        provider = os.getenv("AUTH_PROVIDER", "jwt").strip().lower()
        return IdentityConfig(
            provider=provider,
            jwt_secret=os.getenv("AUTH_JWT_SECRET"),
            jwt_audience=os.getenv("AUTH_JWT_AUDIENCE") or None,
            api_base_url=os.getenv("AUTH_API_BASE_URL"),
            api_key=os.getenv("AUTH_API_KEY"),
            timeout_seconds=float(os.getenv("AUTH_TIMEOUT_SECONDS", "10")),
        )


def extract_bearer_token(authorization: str | None) -> str:
    """Authorization ヘッダから Bearer トークンを取り出す。"""
    if not authorization:
        raise Unauthenticated("Authorization required")
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise Unauthenticated("Authorization required")
    return token.strip()


class StubIdentityProvider:
    """外部の認証基盤に接続しないスタブ実装（テスト/開発用）。トークンをそのまま所有者IDとみなす。"""

    def __init__(self, config: IdentityConfig):
        self.config = config

    def resolve(self, token: str) -> str:
        if not token:
            raise Unauthenticated("Invalid authentication")
        return token


class JwtIdentityProvider:
    """
    HS256 で署名されたアクセストークンをローカルで検証する。
    - 所有者IDは sub クレーム
    - audience は設定時のみ検証する
    """

    def __init__(self, config: IdentityConfig):
        if not config.jwt_secret:
            raise IdentityProviderError("AUTH_JWT_SECRET is required for AUTH_PROVIDER=jwt")
        self.config = config

    def resolve(self, token: str) -> str:
        options = {"require": ["sub", "exp"], "verify_aud": bool(self.config.jwt_audience)}
        try:
            payload = jwt.decode(
                token,
                self.config.jwt_secret,
                algorithms=["HS256"],
                audience=self.config.jwt_audience,
                options=options,
            )
        except jwt.ExpiredSignatureError as e:
            logger.warning("Rejected expired access token")
            raise Unauthenticated("Invalid authentication") from e
        except jwt.InvalidTokenError as e:
            logger.warning("Rejected access token: %s", type(e).__name__)
            raise Unauthenticated("Invalid authentication") from e

        subject = payload.get("sub")
        if not isinstance(subject, str) or not subject:
            raise Unauthenticated("Invalid authentication")
        return subject


class HttpIdentityProvider:
    """
    外部認証基盤の「トークン → ユーザー」APIを httpx で叩く最小クライアント。
    - GET {base_url}/auth/v1/user に Bearer トークンをそのまま渡す
    - 401/403 は Unauthenticated、それ以外の失敗は IdentityProviderError
    """

    def __init__(self, config: IdentityConfig):
        if not config.api_base_url:
            raise IdentityProviderError("AUTH_API_BASE_URL is required for AUTH_PROVIDER=http")
        self.config = config
        self.base_url = config.api_base_url.rstrip("/")

    def resolve(self, token: str) -> str:
        url = f"{self.base_url}/auth/v1/user"
        headers = {"Authorization": f"Bearer {token}"}
        if self.config.api_key:
            headers["apikey"] = self.config.api_key

        timeout = httpx.Timeout(self.config.timeout_seconds)
        try:
            with httpx.Client(timeout=timeout) as client:
                resp = client.get(url, headers=headers)
        except httpx.TimeoutException as e:
            raise IdentityProviderError("Identity provider request timed out") from e
        except httpx.RequestError as e:
            raise IdentityProviderError(f"Identity provider request failed: {type(e).__name__}") from e

        if resp.status_code in (401, 403):
            logger.warning("Identity provider rejected token (status=%s)", resp.status_code)
            raise Unauthenticated("Invalid authentication")
        if resp.status_code >= 400:
            raise IdentityProviderError(f"Identity provider error (status={resp.status_code})")

        try:
            user = resp.json()
        except ValueError as e:
            raise IdentityProviderError("Identity provider returned non-JSON response") from e

        userId = user.get("id") if isinstance(user, dict) else None
        if not isinstance(userId, str) or not userId:
            raise Unauthenticated("Invalid authentication")
        return userId


def build_identity_provider(config: IdentityConfig) -> IdentityProvider:
    provider = (config.provider or "").strip().lower()
    if provider in ("stub", "none", "disabled"):
        return StubIdentityProvider(config)

    if provider == "jwt":
        return JwtIdentityProvider(config)

    if provider in ("http", "supabase"):
        return HttpIdentityProvider(config)

    raise IdentityProviderError(f"Unsupported AUTH_PROVIDER: {config.provider}")


def authenticate(provider: IdentityProvider, authorization: str | None) -> str:
    """目的: Authorization ヘッダから呼び出し元の所有者IDを解決する。"""
    token = extract_bearer_token(authorization)
    return provider.resolve(token)
