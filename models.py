import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy.orm import relationship
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---- ENUM TYPES ----
class AppRole(str, enum.Enum):
    candidate = "candidate"
    recruiter = "recruiter"
    company_admin = "company_admin"
    root = "root"


class ApplicationStatus(str, enum.Enum):
    pending = "pending"
    reviewed = "reviewed"
    interview = "interview"
    rejected = "rejected"
    hired = "hired"


class JobType(str, enum.Enum):
    clt = "clt"
    pj = "pj"
    temporary = "temporary"
    internship = "internship"
    remote = "remote"
    hybrid = "hybrid"


class SubscriptionTier(str, enum.Enum):
    free = "free"
    premium = "premium"


class TagType(str, enum.Enum):
    global_ = "global"
    local = "local"


# ---- TABLES ----
class Profile(Base):
    __tablename__ = "profiles"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String, unique=True, index=True, nullable=False)  # auth provider subject
    full_name = Column(String, nullable=False)
    email = Column(String, nullable=False, index=True)
    avatar_url = Column(String, nullable=True)
    bio = Column(Text, nullable=True)
    phone = Column(String, nullable=True)
    street = Column(String, nullable=True)
    number = Column(String, nullable=True)
    neighborhood = Column(String, nullable=True)
    city = Column(String, nullable=True)
    state = Column(String, nullable=True)
    zip_code = Column(String, nullable=True)
    skills = Column(JSON, nullable=False, default=list)
    experience = Column(Text, nullable=True)
    education = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    role = relationship(
        "UserRole",
        primaryjoin="Profile.user_id == foreign(UserRole.user_id)",
        uselist=False,
        viewonly=True,
    )


class UserRole(Base):
    __tablename__ = "user_roles"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String, unique=True, index=True, nullable=False)
    role = Column(Enum(AppRole, name="app_role"), nullable=False, default=AppRole.candidate)


class Company(Base):
    __tablename__ = "companies"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    logo_url = Column(String, nullable=True)
    website = Column(String, nullable=True)
    industry = Column(String, nullable=True)
    size = Column(String, nullable=True)
    subscription_tier = Column(
        Enum(SubscriptionTier, name="subscription_tier"),
        nullable=False,
        default=SubscriptionTier.free,
    )
    street = Column(String, nullable=True)
    number = Column(String, nullable=True)
    neighborhood = Column(String, nullable=True)
    city = Column(String, nullable=True)
    state = Column(String, nullable=True)
    zip_code = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    members = relationship("CompanyMember", back_populates="company", passive_deletes=True)
    jobs = relationship("Job", back_populates="company", passive_deletes=True)


class CompanyMember(Base):
    __tablename__ = "company_members"
    __table_args__ = (UniqueConstraint("company_id", "user_id", name="uq_company_member"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String, index=True, nullable=False)
    is_admin = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    company = relationship("Company", back_populates="members")


class Job(Base):
    __tablename__ = "jobs"

    id = Column(String(36), primary_key=True, default=_uuid)
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)
    created_by = Column(String, nullable=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=False)
    responsibilities = Column(Text, nullable=True)
    requirements = Column(Text, nullable=True)
    education_required = Column(String, nullable=True)
    experience_required = Column(String, nullable=True)
    skills_required = Column(JSON, nullable=True)
    benefits = Column(Text, nullable=True)
    salary_min = Column(Integer, nullable=True)
    salary_max = Column(Integer, nullable=True)
    job_type = Column(Enum(JobType, name="job_type"), nullable=False, default=JobType.clt)
    work_schedule = Column(String, nullable=True)
    street = Column(String, nullable=True)
    number = Column(String, nullable=True)
    neighborhood = Column(String, nullable=True)
    city = Column(String, nullable=False)
    state = Column(String, nullable=False)
    zip_code = Column(String, nullable=True)
    is_remote = Column(Boolean, default=False)
    is_featured = Column(Boolean, default=False)
    is_active = Column(Boolean, default=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    company = relationship("Company", back_populates="jobs")
    applications = relationship("Application", back_populates="job", passive_deletes=True)
    tags = relationship("Tag", secondary="job_tags", back_populates="jobs")


class Application(Base):
    __tablename__ = "applications"
    __table_args__ = (UniqueConstraint("job_id", "user_id", name="uq_application_job_user"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    job_id = Column(String(36), ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, nullable=False, index=True)
    status = Column(
        Enum(ApplicationStatus, name="application_status", create_constraint=True),
        nullable=False,
        default=ApplicationStatus.pending,
    )
    cover_letter = Column(Text, nullable=True)
    status_changed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    job = relationship("Job", back_populates="applications")
    profile = relationship(
        "Profile",
        primaryjoin="Application.user_id == foreign(Profile.user_id)",
        uselist=False,
        viewonly=True,
    )


class Tag(Base):
    __tablename__ = "tags"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    type = Column(
        Enum(TagType, name="tag_type", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=TagType.local,
    )
    approved = Column(Boolean, nullable=False, default=False)
    user_id = Column(String, nullable=True)
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    jobs = relationship("Job", secondary="job_tags", back_populates="tags")


class JobTag(Base):
    __tablename__ = "job_tags"

    job_id = Column(String(36), ForeignKey("jobs.id", ondelete="CASCADE"), primary_key=True)
    tag_id = Column(String(36), ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True)


class Conversation(Base):
    __tablename__ = "conversations"

    id = Column(String(36), primary_key=True, default=_uuid)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    participants = relationship("ConversationParticipant", back_populates="conversation", passive_deletes=True)
    messages = relationship(
        "Message",
        back_populates="conversation",
        order_by="Message.created_at",
        passive_deletes=True,
    )


class ConversationParticipant(Base):
    __tablename__ = "conversation_participants"

    conversation_id = Column(
        String(36), ForeignKey("conversations.id", ondelete="CASCADE"), primary_key=True
    )
    user_id = Column(String, primary_key=True, index=True)
    last_read_at = Column(DateTime(timezone=True), nullable=True)

    conversation = relationship("Conversation", back_populates="participants")
    profile = relationship(
        "Profile",
        primaryjoin="ConversationParticipant.user_id == foreign(Profile.user_id)",
        uselist=False,
        viewonly=True,
    )


class Message(Base):
    __tablename__ = "messages"

    id = Column(String(36), primary_key=True, default=_uuid)
    conversation_id = Column(
        String(36), ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sender_id = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    conversation = relationship("Conversation", back_populates="messages")
    sender = relationship(
        "Profile",
        primaryjoin="Message.sender_id == foreign(Profile.user_id)",
        uselist=False,
        viewonly=True,
    )
