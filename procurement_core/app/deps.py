from typing import Generator

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from . import models
from .db import SessionLocal
from .schemas import Actor
from .security import decode_token
from .services.errors import ForbiddenError, UnauthorizedError

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


def get_db() -> Generator:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_current_actor(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> Actor:
    payload = decode_token(token)
    username = payload.get("sub")
    if username is None:
        raise UnauthorizedError("Invalid token payload")

    user = db.query(models.User).filter(models.User.username == username).first()
    if user is None:
        raise UnauthorizedError("User not found")
    if not user.is_active:
        raise UnauthorizedError("User account is disabled")
    return Actor.from_user(user)


def require_role(*allowed_roles: models.UserRole):
    def role_checker(actor: Actor = Depends(get_current_actor)) -> Actor:
        if actor.role not in allowed_roles:
            raise ForbiddenError(
                f"Access denied. Required roles: {', '.join(r.value for r in allowed_roles)}"
            )
        return actor

    return role_checker
