"""
Database Schemas for ExecInnov

Each Pydantic model represents a MongoDB collection. The collection name is the
lowercased class name. Example: class User -> collection "user".
References between collections are stringified ObjectIds.
"""
from typing import Optional, List, Literal
from pydantic import BaseModel, ConfigDict, Field, EmailStr

DEFAULT_AVATAR = "/media/avatar.avif"
DEFAULT_MAX_ANS_LENGTH = 600

NotificationType = Literal["ai_completion", "pro_plan", "system"]


class User(BaseModel):
    """
    Users collection schema
    Collection: "user"
    """
    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr = Field(..., description="Unique email address")
    password_hash: str = Field(..., description="BCrypt password hash")
    image: str = Field(default=DEFAULT_AVATAR, description="Avatar path")
    is_admin: bool = Field(default=False)
    subscription: str = Field(default="Free", description="Subscription tier")
    email_verified: bool = Field(default=False)


class Question(BaseModel):
    """Embedded in Tool.questions"""
    model_config = ConfigDict(str_strip_whitespace=True)

    question: str = Field(..., min_length=1)
    answer: str = Field(default="")
    max_ans_length: int = Field(default=DEFAULT_MAX_ANS_LENGTH, ge=1, le=5000)


class Tool(BaseModel):
    """
    Tools collection schema
    Collection: "tool"
    """
    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    system_instructions: str = Field(..., min_length=1)
    questions: List[Question] = Field(..., min_length=1)
    is_pro: bool = Field(default=False)
    is_active: bool = Field(default=True)
    category_id: str = Field(..., description="Owning category id (stringified ObjectId)")
    user_id: str = Field(..., description="Creator user id (stringified ObjectId)")


class Category(BaseModel):
    """
    Categories collection schema
    Collection: "category"
    """
    name: str = Field(..., min_length=1, description="Unique category name")
    is_active: bool = Field(default=True)


class Notification(BaseModel):
    """
    Notifications collection schema
    Collection: "notification"
    """
    user_id: str = Field(..., description="Recipient user id (stringified ObjectId)")
    title: str
    message: str
    type: NotificationType
    is_read: bool = Field(default=False)
    link: Optional[str] = None


class Theme(BaseModel):
    """
    Theme collection schema, a single document for the whole site
    Collection: "theme"
    """
    custom_primary: str = "#000000"
    custom_secondary: str = "#ffffff"
    custom_tertiary: str = "#000000"


class Verification(BaseModel):
    """
    Pending OTPs, one per email, removed by a TTL index after 5 minutes
    Collection: "verification"
    """
    email: EmailStr
    otp: str = Field(..., min_length=6, max_length=6)
