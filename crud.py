from typing import Iterable, List, Optional

from sqlalchemy import or_, func
from sqlalchemy.orm import Session, joinedload, selectinload

import models
import schemas
from models import utcnow


# --- Profile / role CRUD ---
def get_profile_by_user_id(db: Session, user_id: str):
    return db.query(models.Profile).filter(models.Profile.user_id == user_id).first()


def get_profiles_by_user_ids(db: Session, user_ids: Iterable[str]):
    user_ids = list(user_ids)
    if not user_ids:
        return []
    return db.query(models.Profile).filter(models.Profile.user_id.in_(user_ids)).all()


def ensure_user(db: Session, user_id: str, email: str, full_name: Optional[str] = None):
    """Create the profile and candidate role rows for a new auth user.

    Existing rows are left untouched, so calling this on every request is safe.
    """
    profile = get_profile_by_user_id(db, user_id)
    if not profile:
        profile = models.Profile(
            user_id=user_id,
            email=email,
            full_name=full_name or email.split("@")[0],
            skills=[],
        )
        db.add(profile)

    if not get_user_role(db, user_id):
        db.add(models.UserRole(user_id=user_id, role=models.AppRole.candidate))

    db.flush()
    return profile


def update_profile(db: Session, user_id: str, updates: schemas.ProfileUpdate):
    profile = get_profile_by_user_id(db, user_id)
    if not profile:
        return None

    for field, value in updates.model_dump(exclude_unset=True).items():
        setattr(profile, field, value)
    db.add(profile)
    db.commit()
    db.refresh(profile)
    return profile


def get_user_role(db: Session, user_id: str):
    return db.query(models.UserRole).filter(models.UserRole.user_id == user_id).first()


def set_user_role(db: Session, user_id: str, role: models.AppRole):
    """Upsert the single role row of a user."""
    user_role = get_user_role(db, user_id)
    if user_role:
        user_role.role = role
    else:
        user_role = models.UserRole(user_id=user_id, role=role)
        db.add(user_role)
    db.flush()
    return user_role


# --- Company CRUD ---
def get_company(db: Session, company_id: str):
    return db.query(models.Company).filter(models.Company.id == company_id).first()


def get_membership(db: Session, user_id: str):
    return (
        db.query(models.CompanyMember)
        .filter(models.CompanyMember.user_id == user_id)
        .order_by(models.CompanyMember.created_at)
        .first()
    )


def get_company_member(db: Session, company_id: str, user_id: str):
    return (
        db.query(models.CompanyMember)
        .filter(
            models.CompanyMember.company_id == company_id,
            models.CompanyMember.user_id == user_id,
        )
        .first()
    )


def create_company(db: Session, company: schemas.CompanyCreate, user_id: str):
    """Insert a company, make the creator its admin member and a recruiter."""
    db_company = models.Company(**company.model_dump())
    db.add(db_company)
    db.flush()

    db.add(models.CompanyMember(company_id=db_company.id, user_id=user_id, is_admin=True))
    set_user_role(db, user_id, models.AppRole.recruiter)

    db.commit()
    db.refresh(db_company)
    return db_company


def update_company(db: Session, company_id: str, updates: schemas.CompanyUpdate):
    db_company = get_company(db, company_id)
    if not db_company:
        return None

    for field, value in updates.model_dump(exclude_unset=True).items():
        setattr(db_company, field, value)
    db.add(db_company)
    db.commit()
    db.refresh(db_company)
    return db_company


def delete_company(db: Session, company_id: str):
    db_company = get_company(db, company_id)
    if not db_company:
        return False
    db.delete(db_company)
    db.commit()
    return True


def list_companies(db: Session):
    return db.query(models.Company).order_by(models.Company.created_at.desc()).all()


def list_company_options(db: Session):
    return db.query(models.Company).order_by(models.Company.name).all()


def list_company_jobs(db: Session, company_id: str):
    return (
        db.query(models.Job)
        .filter(models.Job.company_id == company_id)
        .order_by(models.Job.created_at.desc())
        .all()
    )


# --- Tag CRUD ---
def list_tags(db: Session):
    return db.query(models.Tag).order_by(models.Tag.name).all()


def get_tag_by_name(db: Session, name: str):
    return db.query(models.Tag).filter(func.lower(models.Tag.name) == name.strip().lower()).first()


def create_tag(db: Session, tag: schemas.TagCreate, user_id: str, company_id: Optional[str] = None):
    """Local tags are usable immediately; global ones wait for approval."""
    db_tag = models.Tag(
        name=tag.name.strip(),
        description=tag.description or None,
        type=tag.type,
        approved=tag.type == models.TagType.local,
        user_id=user_id,
        company_id=company_id,
    )
    db.add(db_tag)
    db.flush()
    return db_tag


def sync_job_tags(db: Session, db_job: models.Job, skills: List[str], user_id: str):
    """Point job_tags at one tag per skill, creating unknown skills as local tags."""
    tags = []
    for skill in skills:
        if not skill.strip():
            continue
        tag = get_tag_by_name(db, skill)
        if not tag:
            tag = create_tag(
                db,
                schemas.TagCreate(name=skill, type=models.TagType.local),
                user_id=user_id,
                company_id=db_job.company_id,
            )
        if tag not in tags:
            tags.append(tag)
    db_job.tags = tags


# --- Job CRUD ---
def _jobs_with_company(db: Session):
    return db.query(models.Job).options(joinedload(models.Job.company))


def _apply_text_search(query, search: Optional[str]):
    if search:
        pattern = f"%{search}%"
        query = query.filter(
            or_(models.Job.title.ilike(pattern), models.Job.description.ilike(pattern))
        )
    return query


def search_jobs(
    db: Session,
    search: Optional[str] = None,
    city: Optional[str] = None,
    state: Optional[str] = None,
    job_type: Optional[models.JobType] = None,
    is_remote: Optional[bool] = None,
):
    """Active jobs, featured first then newest."""
    query = _jobs_with_company(db).filter(models.Job.is_active.is_(True))
    query = _apply_text_search(query, search)
    if city:
        query = query.filter(models.Job.city.ilike(f"%{city}%"))
    if state:
        query = query.filter(models.Job.state == state)
    if job_type:
        query = query.filter(models.Job.job_type == job_type)
    if is_remote is not None:
        query = query.filter(models.Job.is_remote.is_(is_remote))
    return query.order_by(models.Job.is_featured.desc(), models.Job.created_at.desc()).all()


def get_job(db: Session, job_id: str):
    return _jobs_with_company(db).filter(models.Job.id == job_id).first()


def create_job(db: Session, job: schemas.JobCreate, user_id: str):
    db_job = models.Job(**job.model_dump(), created_by=user_id)
    db.add(db_job)
    db.flush()
    sync_job_tags(db, db_job, job.skills_required, user_id)
    db.commit()
    db.refresh(db_job)
    return db_job


def update_job(db: Session, job_id: str, updates: schemas.JobUpdate, user_id: str):
    db_job = get_job(db, job_id)
    if not db_job:
        return None

    changes = updates.model_dump(exclude_unset=True)
    for field, value in changes.items():
        setattr(db_job, field, value)
    if "skills_required" in changes:
        sync_job_tags(db, db_job, changes["skills_required"] or [], user_id)
    db.add(db_job)
    db.commit()
    db.refresh(db_job)
    return db_job


def delete_job(db: Session, job_id: str):
    db_job = db.query(models.Job).filter(models.Job.id == job_id).first()
    if not db_job:
        return False
    db.delete(db_job)
    db.commit()
    return True


def list_managed_jobs(
    db: Session, user_id: str, company_id: Optional[str] = None, search: Optional[str] = None
):
    """Jobs of the user's company or created by the user, newest first."""
    query = _jobs_with_company(db)
    if company_id:
        query = query.filter(
            or_(models.Job.company_id == company_id, models.Job.created_by == user_id)
        )
    else:
        query = query.filter(models.Job.created_by == user_id)
    query = _apply_text_search(query, search)
    return query.order_by(models.Job.created_at.desc()).all()


def list_all_jobs(db: Session, limit: int = 100):
    return _jobs_with_company(db).order_by(models.Job.created_at.desc()).limit(limit).all()


def count_applications_by_job(db: Session, job_ids: List[str]) -> dict:
    if not job_ids:
        return {}
    rows = (
        db.query(models.Application.job_id, func.count(models.Application.id))
        .filter(models.Application.job_id.in_(job_ids))
        .group_by(models.Application.job_id)
        .all()
    )
    return {job_id: count for job_id, count in rows}


# --- Application CRUD ---
def create_application(db: Session, job_id: str, user_id: str, cover_letter: Optional[str]):
    """Insert a pending application. IntegrityError propagates on duplicates."""
    db_application = models.Application(
        job_id=job_id,
        user_id=user_id,
        cover_letter=cover_letter or None,
    )
    db.add(db_application)
    db.commit()
    db.refresh(db_application)
    return db_application


def get_application(db: Session, application_id: str):
    return (
        db.query(models.Application)
        .options(joinedload(models.Application.job))
        .filter(models.Application.id == application_id)
        .first()
    )


def list_user_applications(db: Session, user_id: str):
    return (
        db.query(models.Application)
        .options(joinedload(models.Application.job).joinedload(models.Job.company))
        .filter(models.Application.user_id == user_id)
        .order_by(models.Application.created_at.desc())
        .all()
    )


def list_applied_job_ids(db: Session, user_id: str) -> List[str]:
    rows = db.query(models.Application.job_id).filter(models.Application.user_id == user_id).all()
    return [job_id for (job_id,) in rows]


def list_job_applications(db: Session, job_id: str):
    return (
        db.query(models.Application)
        .options(joinedload(models.Application.profile))
        .filter(models.Application.job_id == job_id)
        .order_by(models.Application.created_at.desc())
        .all()
    )


def list_applications_for_jobs(db: Session, job_ids: List[str]):
    if not job_ids:
        return []
    return db.query(models.Application).filter(models.Application.job_id.in_(job_ids)).all()


def update_application_status(
    db: Session, application_id: str, status: models.ApplicationStatus
):
    db_application = get_application(db, application_id)
    if not db_application:
        return None

    if db_application.status != status:
        db_application.status = status
        db_application.status_changed_at = utcnow()
    db.add(db_application)
    db.commit()
    db.refresh(db_application)
    return db_application


# --- Messaging CRUD ---
def get_conversation(db: Session, conversation_id: str):
    return (
        db.query(models.Conversation)
        .options(
            selectinload(models.Conversation.participants).joinedload(
                models.ConversationParticipant.profile
            )
        )
        .filter(models.Conversation.id == conversation_id)
        .first()
    )


def get_participant(db: Session, conversation_id: str, user_id: str):
    return (
        db.query(models.ConversationParticipant)
        .filter(
            models.ConversationParticipant.conversation_id == conversation_id,
            models.ConversationParticipant.user_id == user_id,
        )
        .first()
    )


def list_conversations(db: Session, user_id: str):
    """The user's conversations, most recently active first."""
    conversation_ids = (
        db.query(models.ConversationParticipant.conversation_id)
        .filter(models.ConversationParticipant.user_id == user_id)
        .scalar_subquery()
    )
    return (
        db.query(models.Conversation)
        .options(
            selectinload(models.Conversation.participants).joinedload(
                models.ConversationParticipant.profile
            )
        )
        .filter(models.Conversation.id.in_(conversation_ids))
        .order_by(models.Conversation.updated_at.desc())
        .all()
    )


def get_last_message(db: Session, conversation_id: str):
    return (
        db.query(models.Message)
        .options(joinedload(models.Message.sender))
        .filter(models.Message.conversation_id == conversation_id)
        .order_by(models.Message.created_at.desc())
        .first()
    )


def list_messages(db: Session, conversation_id: str):
    return (
        db.query(models.Message)
        .options(joinedload(models.Message.sender))
        .filter(models.Message.conversation_id == conversation_id)
        .order_by(models.Message.created_at.asc())
        .all()
    )


def create_message(db: Session, conversation_id: str, sender_id: str, content: str):
    """Insert a message and bump the conversation so it sorts as most recent."""
    db_message = models.Message(
        conversation_id=conversation_id,
        sender_id=sender_id,
        content=content,
    )
    db.add(db_message)
    db.flush()

    conversation = db.get(models.Conversation, conversation_id)
    conversation.updated_at = db_message.created_at
    db.commit()
    db.refresh(db_message)
    return db_message


def find_shared_conversation(db: Session, user_id: str, other_user_id: str):
    if user_id == other_user_id:
        return None
    mine = (
        db.query(models.ConversationParticipant.conversation_id)
        .filter(models.ConversationParticipant.user_id == user_id)
        .scalar_subquery()
    )
    shared = (
        db.query(models.ConversationParticipant)
        .filter(
            models.ConversationParticipant.user_id == other_user_id,
            models.ConversationParticipant.conversation_id.in_(mine),
        )
        .first()
    )
    if not shared:
        return None
    return db.get(models.Conversation, shared.conversation_id)


def create_conversation(db: Session, user_ids: List[str]):
    conversation = models.Conversation()
    db.add(conversation)
    db.flush()
    for participant_id in dict.fromkeys(user_ids):
        db.add(
            models.ConversationParticipant(
                conversation_id=conversation.id, user_id=participant_id
            )
        )
    db.commit()
    db.refresh(conversation)
    return conversation


def mark_conversation_read(db: Session, conversation_id: str, user_id: str):
    participant = get_participant(db, conversation_id, user_id)
    if not participant:
        return None
    participant.last_read_at = utcnow()
    db.commit()
    db.refresh(participant)
    return participant


# --- Admin queries ---
def list_profiles(db: Session, search: Optional[str] = None, limit: int = 100):
    query = db.query(models.Profile).options(joinedload(models.Profile.role))
    if search:
        pattern = f"%{search}%"
        query = query.filter(
            or_(models.Profile.full_name.ilike(pattern), models.Profile.email.ilike(pattern))
        )
    return query.order_by(models.Profile.created_at.desc()).limit(limit).all()
