from fastapi import Depends, Header, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from redis.asyncio import Redis

from app.config import Settings
from app.exceptions import NotAuthenticated
from app.feed.service import FeedCacheManager

_bearer = HTTPBearer(auto_error=False)


def get_settings() -> Settings:
    return Settings()


async def get_current_user(
    x_user_id: str | None = Header(default=None, alias="X-User-ID"),
    credentials: HTTPAuthorizationCredentials | None = Security(_bearer),
    settings: Settings = Depends(get_settings),
) -> str:
    """Caller identity.

    The gateway authenticates and forwards `X-User-ID`; a bearer token is
    accepted for direct service-to-service calls when the header is absent.
    """
    if x_user_id and x_user_id.strip():
        return x_user_id.strip()
    if credentials is None:
        raise NotAuthenticated()
    try:
        payload = jwt.decode(
            credentials.credentials,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
        )
        return str(payload["sub"])
    except (JWTError, KeyError):
        raise NotAuthenticated("Invalid or expired token")


def get_redis(request: Request) -> Redis:
    return request.app.state.redis


def get_feed_manager(request: Request) -> FeedCacheManager:
    return request.app.state.feed_manager
