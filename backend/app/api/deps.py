from collections.abc import Callable, Generator, Iterable
from dataclasses import dataclass
from enum import Enum

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.orm import Session

from app.core.exceptions import AuthorizationError
from app.core.security import decode_token
from app.db.session import SessionLocal

security = HTTPBearer()


class UserRole(str, Enum):
    super_admin = "super_admin"
    admin = "admin"
    teacher = "teacher"


@dataclass(frozen=True)
class RequestContext:
    user_id: str
    role: UserRole
    school_id: str


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_request_context(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> RequestContext:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = decode_token(credentials.credentials)
    except JWTError as exc:
        raise credentials_exception from exc

    user_id = payload.get("sub")
    school_id = payload.get("school_id")
    if not user_id or not school_id:
        raise credentials_exception
    try:
        role = UserRole(payload.get("role"))
    except ValueError as exc:
        raise credentials_exception from exc
    return RequestContext(user_id=user_id, role=role, school_id=school_id)


def require_roles(*roles: UserRole) -> Callable[[RequestContext], RequestContext]:
    allowed_roles: Iterable[UserRole] = set(roles)

    def role_checker(context: RequestContext = Depends(get_request_context)) -> RequestContext:
        if context.role not in allowed_roles:
            raise AuthorizationError()
        return context

    return role_checker


require_admin = require_roles(UserRole.super_admin, UserRole.admin)
require_staff = require_roles(UserRole.super_admin, UserRole.admin, UserRole.teacher)
