from datetime import datetime, timedelta, timezone

import jwt

from agenda.core import config


def create_access_token(subject: str, expires_minutes: int | None = None) -> str:
    """Sign a token the way the hosted auth service does; used by tooling and tests."""
    expire_minutes = expires_minutes or config.JWT_EXPIRES_MINUTES
    now = datetime.now(timezone.utc)
    payload = {"sub": subject, "exp": now + timedelta(minutes=expire_minutes), "iat": now}
    if config.JWT_AUDIENCE:
        payload["aud"] = config.JWT_AUDIENCE
    return jwt.encode(payload, config.JWT_SECRET_KEY, algorithm=config.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict:
    options = {} if config.JWT_AUDIENCE else {"verify_aud": False}
    return jwt.decode(
        token,
        config.JWT_SECRET_KEY,
        algorithms=[config.JWT_ALGORITHM],
        audience=config.JWT_AUDIENCE or None,
        options=options,
    )
