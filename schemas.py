from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from models import AppRole, ApplicationStatus, JobType, SubscriptionTier, TagType


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


def _reject_null(value):
    # Partial updates may omit a required column but never clear it
    if value is None:
        raise ValueError("This field cannot be empty")
    return value


def _company_name(value: str) -> str:
    if value is None or not value.strip():
        raise ValueError("Company name is required")
    return value.strip()


# --- Auth ---
class SignupRequest(BaseModel):
    full_name: str = Field(min_length=2, max_length=100)
    email: EmailStr
    password: str = Field(min_length=6)
    confirm_password: str

    @model_validator(mode="after")
    def passwords_match(self):
        if self.password != self.confirm_password:
            raise ValueError("Passwords do not match")
        return self


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=6)


class AuthSession(BaseModel):
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    user_id: str
    email: Optional[str] = None


class OAuthRedirect(BaseModel):
    url: str


# --- Profiles ---
class ProfileSummary(ORMModel):
    id: str
    user_id: str
    full_name: str
    avatar_url: Optional[str] = None


class Profile(ORMModel):
    id: str
    user_id: str
    full_name: str
    email: str
    avatar_url: Optional[str] = None
    bio: Optional[str] = None
    phone: Optional[str] = None
    street: Optional[str] = None
    number: Optional[str] = None
    neighborhood: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    skills: List[str] = []
    experience: Optional[str] = None
    education: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @field_validator("skills", mode="before")
    @classmethod
    def _skills_default(cls, value):
        return value or []


class ProfileUpdate(BaseModel):
    full_name: Optional[str] = Field(default=None, min_length=3)
    email: Optional[EmailStr] = None
    avatar_url: Optional[str] = None
    phone: Optional[str] = None
    bio: Optional[str] = None
    street: Optional[str] = None
    number: Optional[str] = None
    neighborhood: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    skills: Optional[List[str]] = None
    experience: Optional[str] = None
    education: Optional[str] = None

    @field_validator("full_name", "email", "skills")
    @classmethod
    def _not_null(cls, value):
        return _reject_null(value)


# --- Companies ---
class CompanyBase(BaseModel):
    name: str
    description: Optional[str] = None
    logo_url: Optional[str] = None
    website: Optional[str] = None
    industry: Optional[str] = None
    size: Optional[str] = None
    street: Optional[str] = None
    number: Optional[str] = None
    neighborhood: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None


class CompanyCreate(CompanyBase):
    @field_validator("name")
    @classmethod
    def name_required(cls, value):
        return _company_name(value)


class CompanyUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    logo_url: Optional[str] = None
    website: Optional[str] = None
    industry: Optional[str] = None
    size: Optional[str] = None
    street: Optional[str] = None
    number: Optional[str] = None
    neighborhood: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None

    @field_validator("name")
    @classmethod
    def name_required(cls, value):
        return _company_name(value)


class Company(CompanyBase, ORMModel):
    id: str
    subscription_tier: SubscriptionTier
    created_at: datetime
    updated_at: datetime


class MyCompany(Company):
    is_admin: bool


class CompanySummary(ORMModel):
    id: str
    name: str
    logo_url: Optional[str] = None
    subscription_tier: Optional[SubscriptionTier] = None


class CompanyOption(ORMModel):
    id: str
    name: str


# --- Jobs ---
class JobCreate(BaseModel):
    company_id: str
    title: str = Field(min_length=3)
    description: str = Field(min_length=10)
    responsibilities: Optional[str] = None
    requirements: Optional[str] = None
    education_required: Optional[str] = None
    experience_required: Optional[str] = None
    skills_required: List[str] = []
    benefits: Optional[str] = None
    salary_min: Optional[int] = None
    salary_max: Optional[int] = None
    job_type: JobType = JobType.clt
    work_schedule: Optional[str] = None
    street: Optional[str] = None
    number: Optional[str] = None
    neighborhood: Optional[str] = None
    city: str = Field(min_length=2)
    state: str = Field(min_length=2)
    zip_code: Optional[str] = None
    is_remote: bool = False
    is_featured: bool = False
    is_active: bool = True
    expires_at: Optional[datetime] = None


class JobUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=3)
    description: Optional[str] = Field(default=None, min_length=10)
    responsibilities: Optional[str] = None
    requirements: Optional[str] = None
    education_required: Optional[str] = None
    experience_required: Optional[str] = None
    skills_required: Optional[List[str]] = None
    benefits: Optional[str] = None
    salary_min: Optional[int] = None
    salary_max: Optional[int] = None
    job_type: Optional[JobType] = None
    work_schedule: Optional[str] = None
    street: Optional[str] = None
    number: Optional[str] = None
    neighborhood: Optional[str] = None
    city: Optional[str] = Field(default=None, min_length=2)
    state: Optional[str] = Field(default=None, min_length=2)
    zip_code: Optional[str] = None
    is_remote: Optional[bool] = None
    is_featured: Optional[bool] = None
    is_active: Optional[bool] = None
    expires_at: Optional[datetime] = None

    @field_validator("title", "description", "city", "state", "job_type")
    @classmethod
    def _not_null(cls, value):
        return _reject_null(value)


class Job(ORMModel):
    id: str
    company_id: str
    created_by: Optional[str] = None
    title: str
    description: str
    responsibilities: Optional[str] = None
    requirements: Optional[str] = None
    education_required: Optional[str] = None
    experience_required: Optional[str] = None
    skills_required: List[str] = []
    benefits: Optional[str] = None
    salary_min: Optional[int] = None
    salary_max: Optional[int] = None
    job_type: JobType
    work_schedule: Optional[str] = None
    street: Optional[str] = None
    number: Optional[str] = None
    neighborhood: Optional[str] = None
    city: str
    state: str
    zip_code: Optional[str] = None
    is_remote: Optional[bool] = None
    is_featured: Optional[bool] = None
    is_active: Optional[bool] = None
    expires_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    company: Optional[CompanySummary] = None

    @field_validator("skills_required", mode="before")
    @classmethod
    def _skills_default(cls, value):
        return value or []


class ManagedJob(Job):
    application_count: int = 0


# --- Applications ---
class ApplicationCreate(BaseModel):
    cover_letter: Optional[str] = None


class ApplicationStatusUpdate(BaseModel):
    status: ApplicationStatus


class ApplicationJob(ORMModel):
    id: str
    title: str
    company: Optional[CompanySummary] = None


class Application(ORMModel):
    id: str
    job_id: str
    user_id: str
    status: ApplicationStatus
    cover_letter: Optional[str] = None
    status_changed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class MyApplication(Application):
    job: Optional[ApplicationJob] = None


class CandidateApplication(Application):
    profile: Optional[Profile] = None


# --- Tags ---
class TagCreate(BaseModel):
    name: str = Field(min_length=1)
    description: Optional[str] = None
    type: TagType = TagType.local


class Tag(ORMModel):
    id: str
    name: str
    description: Optional[str] = None
    type: TagType
    approved: bool
    user_id: Optional[str] = None
    company_id: Optional[str] = None
    created_at: datetime


# --- Messaging ---
class MessageCreate(BaseModel):
    content: str = Field(min_length=1)


class ConversationStart(BaseModel):
    user_id: str


class Message(ORMModel):
    id: str
    conversation_id: str
    sender_id: str
    content: str
    created_at: datetime
    sender: Optional[ProfileSummary] = None


class Participant(ORMModel):
    user_id: str
    last_read_at: Optional[datetime] = None
    profile: Optional[ProfileSummary] = None


class Conversation(ORMModel):
    id: str
    created_at: datetime
    updated_at: datetime
    participants: List[Participant] = []
    last_message: Optional[Message] = None


class ConversationRef(ORMModel):
    id: str


# --- Candidate outreach ---
class CandidateMessageRequest(BaseModel):
    user_ids: List[str] = Field(min_length=1)
    content: str = Field(min_length=1)


class CandidateEmailRequest(BaseModel):
    user_ids: List[str] = Field(min_length=1)
    subject: Optional[str] = None
    message: str = Field(min_length=1)


class OutreachResult(BaseModel):
    sent: int


# --- Email function ---
class EmailRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    to: List[EmailStr]
    subject: Optional[str] = None
    message: str
    job_title: str = Field(alias="jobTitle")
    company_name: Optional[str] = Field(default=None, alias="companyName")


class EmailResult(BaseModel):
    success: bool
    sent: int


# --- Address lookup ---
class Address(BaseModel):
    zip_code: str
    street: Optional[str] = None
    neighborhood: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None


# --- Analytics ---
class StatusCounts(BaseModel):
    pending: int = 0
    reviewed: int = 0
    interview: int = 0
    rejected: int = 0
    hired: int = 0


class JobAnalytics(StatusCounts):
    job_id: str
    job_title: str
    total_applications: int
    conversion_rate: float
    avg_response_time: float  # hours


class TrendPoint(BaseModel):
    date: str
    count: int


class OverviewStats(BaseModel):
    total_jobs: int
    total_applications: int
    overall_conversion_rate: float
    avg_response_time: float
    applications_by_status: StatusCounts
    applications_trend: List[TrendPoint]


class CompanyAnalytics(BaseModel):
    jobs: List[JobAnalytics]
    overview: OverviewStats


# --- Admin ---
class AdminUser(Profile):
    role: Optional[AppRole] = None

    @field_validator("role", mode="before")
    @classmethod
    def _role_value(cls, value):
        # Profile.role is the UserRole row; flatten to the enum
        return getattr(value, "role", value)


class RoleUpdate(BaseModel):
    role: AppRole
