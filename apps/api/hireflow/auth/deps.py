from __future__ import annotations

from typing import Annotated

import structlog
from fastapi import Depends, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from hireflow.core.config import settings
from hireflow.db import get_db
from hireflow.models import User

DBSession = Annotated[Session, Depends(get_db)]


def _unauthorized(detail: str = "unauthorized") -> HTTPException:
    return HTTPException(
        status_code=401,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _bearer_token(request: Request) -> str | None:
    auth = request.headers.get("Authorization", "")
    if auth.startswith("Bearer "):
        return auth.removeprefix("Bearer ").strip()
    # EventSource cannot send headers, so the stream endpoint passes ?token=
    return request.query_params.get("token")


def get_current_user(request: Request, db: DBSession) -> User:
    token = _bearer_token(request)
    if not token:
        raise _unauthorized("missing bearer token")

    # Local dev auth only; production identity is resolved upstream
    if settings.auth_mode == "dev" and settings.env == "local":
        prefix = settings.dev_auth_prefix
        if not token.startswith(prefix):
            raise _unauthorized(f"invalid dev token (expected prefix {prefix})")

        email = token.removeprefix(prefix).strip()
        if "@" not in email:
            raise _unauthorized("invalid email in token")

        user = db.scalar(select(User).where(User.email == email))
        if not user:
            user = User(email=email, name=None)
            db.add(user)
            db.commit()
            db.refresh(user)

        structlog.contextvars.bind_contextvars(user_id=str(user.id))
        return user

    raise _unauthorized("auth not configured")


CurrentUser = Annotated[User, Depends(get_current_user)]
