"""
Pydantic Schema Definitions
============================
Defines the stored records and the request/response models of the
Marketplace API.

Stored records:   User, Product, Project, Message, News, WaitlistEntry,
                  VerificationEvent. These are what the store hands out.
Create payloads:  *Create models. Server-owned fields (id, createdAt,
                  sellerId, senderId, ...) are never accepted from clients.
Responses:        PublicUser, ProductVerification, ConversationSummary,
                  OpenedConversation, ChatReply.

Field names are camelCase because they are the JSON wire format.
"""

from datetime import datetime
from typing import ClassVar, List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, model_validator

VerificationStatus = Literal["pending", "approved", "rejected"]
ProjectStatus = Literal["open", "in-progress", "completed", "cancelled"]


class PartialUpdate(BaseModel):
    """
    Base for partial-update payloads.

    Every field is optional so it can be left out, but the ones listed in
    `non_nullable` back required fields of the stored record and may not
    be sent as an explicit null.
    """
    non_nullable: ClassVar[tuple[str, ...]] = ()

    @model_validator(mode="after")
    def reject_explicit_nulls(self):
        nulled = [name for name in self.non_nullable
                  if name in self.model_fields_set and getattr(self, name) is None]
        if nulled:
            raise ValueError(f"{', '.join(nulled)} cannot be null")
        return self


# ---------- USERS ----------

class User(BaseModel):
    """Stored user. `password` is a passlib hash, never plain text."""
    id: int
    username: str
    password: str
    email: str
    fullName: Optional[str] = None
    bio: Optional[str] = None
    avatar: Optional[str] = None
    role: str = Field(default="user", description="'user' or 'admin'")
    createdAt: datetime


class PublicUser(BaseModel):
    """User as seen by other clients: everything except the password hash."""
    id: int
    username: str
    email: str
    fullName: Optional[str] = None
    bio: Optional[str] = None
    avatar: Optional[str] = None
    role: str = "user"
    createdAt: datetime

    @classmethod
    def from_user(cls, user: User) -> "PublicUser":
        return cls(**user.model_dump(exclude={"password"}))


class UserCreate(BaseModel):
    username: str = Field(min_length=1, max_length=64)
    password: str = Field(min_length=1)
    email: EmailStr
    fullName: Optional[str] = None


class LoginRequest(BaseModel):
    username: str = Field(min_length=1, description="Username is required")
    password: str = Field(min_length=1, description="Password is required")


class UserUpdate(PartialUpdate):
    non_nullable: ClassVar[tuple[str, ...]] = ("email",)

    email: Optional[EmailStr] = None
    fullName: Optional[str] = None
    bio: Optional[str] = None
    avatar: Optional[str] = None


# ---------- PRODUCTS ----------

class Product(BaseModel):
    """A listing. `createdAt` is set once by the store and never changes."""
    id: int
    name: str
    description: str
    price: int = Field(description="Price in raw currency units")
    image: Optional[str] = None
    category: Optional[str] = None
    tags: Optional[List[str]] = None
    sellerId: int
    featured: bool = False
    verificationStatus: VerificationStatus = "pending"
    verificationNotes: Optional[str] = None
    createdAt: datetime


class ProductCreate(BaseModel):
    name: str
    description: str
    price: int
    image: Optional[str] = None
    category: Optional[str] = None
    tags: Optional[List[str]] = None
    featured: bool = False


class ProductUpdate(PartialUpdate):
    """Seller-editable fields. Verification fields go through /verify only."""
    non_nullable: ClassVar[tuple[str, ...]] = ("name", "description", "price", "featured")

    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[int] = None
    image: Optional[str] = None
    category: Optional[str] = None
    tags: Optional[List[str]] = None
    featured: Optional[bool] = None


class VerifyRequest(BaseModel):
    automated: bool = True
    verificationStatus: Optional[Literal["approved", "rejected"]] = None
    verificationNotes: Optional[str] = None


class VerificationResult(BaseModel):
    """Outcome of one verification run. Rejection is a value, not an error."""
    status: Literal["approved", "rejected"]
    notes: str
    riskScore: int = Field(ge=0, le=100)


class ProductVerification(Product):
    """Product after an automated verification, with the risk score attached."""
    riskScore: Optional[int] = None


class VerificationEvent(BaseModel):
    """Audit log entry: one status transition of a product."""
    id: int
    productId: int
    actorId: Optional[int] = Field(default=None, description="None for automated runs")
    automated: bool
    previousStatus: VerificationStatus
    status: VerificationStatus
    notes: Optional[str] = None
    riskScore: Optional[int] = None
    createdAt: datetime


# ---------- PROJECTS ----------

class Project(BaseModel):
    id: int
    title: str
    description: str
    requirements: str
    minBudget: Optional[int] = None
    maxBudget: Optional[int] = None
    deadline: Optional[str] = Field(default=None, description="Free text, e.g. '2 weeks'")
    status: ProjectStatus = "open"
    userId: int
    createdAt: datetime


class ProjectCreate(BaseModel):
    title: str = Field(min_length=1)
    description: str = Field(min_length=1)
    requirements: str = Field(min_length=1)
    minBudget: Optional[int] = Field(default=None, ge=0)
    maxBudget: Optional[int] = Field(default=None, ge=0)
    deadline: Optional[str] = None

    @model_validator(mode="after")
    def check_budget_range(self):
        if self.minBudget is not None and self.maxBudget is not None and self.minBudget > self.maxBudget:
            raise ValueError("minBudget must not exceed maxBudget")
        return self


class ProjectUpdate(PartialUpdate):
    non_nullable: ClassVar[tuple[str, ...]] = ("title", "description", "requirements", "status")

    title: Optional[str] = None
    description: Optional[str] = None
    requirements: Optional[str] = None
    minBudget: Optional[int] = Field(default=None, ge=0)
    maxBudget: Optional[int] = Field(default=None, ge=0)
    deadline: Optional[str] = None
    status: Optional[ProjectStatus] = None


# ---------- MESSAGES ----------

class Message(BaseModel):
    """Direct message. Only `read` ever changes, and only false -> true."""
    id: int
    content: str
    senderId: int
    receiverId: int
    projectId: Optional[int] = None
    read: bool = False
    createdAt: datetime


class MessageCreate(BaseModel):
    content: str = Field(min_length=1, max_length=5000)
    receiverId: int
    projectId: Optional[int] = None


class ConversationSummary(BaseModel):
    """
    One row of the messaging sidebar.

    `counterpart` is None when the other user's profile no longer resolves.
    """
    counterpartId: int
    counterpart: Optional[PublicUser] = None
    lastMessage: Message
    unreadCount: int


class OpenedConversation(BaseModel):
    marked: int = Field(description="Messages flipped to read by this call")
    messages: List[Message]


# ---------- NEWS & WAITLIST ----------

class News(BaseModel):
    id: int
    title: str
    content: str
    image: Optional[str] = None
    category: str
    createdAt: datetime


class NewsCreate(BaseModel):
    title: str
    content: str
    image: Optional[str] = None
    category: str


class WaitlistEntry(BaseModel):
    id: int
    email: str
    name: Optional[str] = None
    interest: Optional[str] = None
    newsletter: bool = False
    createdAt: datetime


class WaitlistCreate(BaseModel):
    email: EmailStr
    name: Optional[str] = None
    interest: Optional[str] = None
    newsletter: bool = False


# ---------- CHAT ----------

class ChatRequest(BaseModel):
    message: str = Field(description="Free-text question for the assistant")


class ChatReply(BaseModel):
    answer: str
