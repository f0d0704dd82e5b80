"""Authorization checks for company, role and conversation scoped rows.

``get_user_company``, ``has_role``, ``is_company_admin`` and ``is_company_member``
answer the same questions as the database-side helper functions of the hosted
schema; the ``require_*`` helpers turn a failed check into an HTTP error.
"""
from typing import Iterable, Optional

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

import crud
import models


def get_user_company(db: Session, user_id: str) -> Optional[str]:
    membership = crud.get_membership(db, user_id)
    return membership.company_id if membership else None


def has_role(db: Session, user_id: str, role: models.AppRole) -> bool:
    user_role = crud.get_user_role(db, user_id)
    return user_role is not None and user_role.role == role


def has_any_role(db: Session, user_id: str, roles: Iterable[models.AppRole]) -> bool:
    user_role = crud.get_user_role(db, user_id)
    return user_role is not None and user_role.role in set(roles)


def is_company_admin(db: Session, company_id: str, user_id: str) -> bool:
    member = crud.get_company_member(db, company_id, user_id)
    return bool(member and member.is_admin)


def is_company_member(db: Session, company_id: str, user_id: str) -> bool:
    return crud.get_company_member(db, company_id, user_id) is not None


def _forbidden(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


def require_company_member(db: Session, company_id: str, user_id: str) -> None:
    if is_company_member(db, company_id, user_id) or has_role(db, user_id, models.AppRole.root):
        return
    raise _forbidden("You are not a member of this company")


def require_company_admin(db: Session, company_id: str, user_id: str) -> None:
    if is_company_admin(db, company_id, user_id) or has_role(db, user_id, models.AppRole.root):
        return
    raise _forbidden("Only company admins can do this")


def require_participant(db: Session, conversation_id: str, user_id: str) -> None:
    if crud.get_participant(db, conversation_id, user_id) is None:
        raise _forbidden("You are not part of this conversation")


def require_admin_area(db: Session, user_id: str) -> None:
    if not has_any_role(db, user_id, (models.AppRole.root, models.AppRole.company_admin)):
        raise _forbidden("Access denied")
