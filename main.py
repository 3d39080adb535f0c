import os
import re
import math
import time
import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional, List, Literal, Annotated

from fastapi import FastAPI, HTTPException, Depends, Query, Response, Cookie, UploadFile, File, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, ConfigDict, EmailStr, Field, StringConstraints, model_validator
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError
from bson.objectid import ObjectId
from jose import JWTError

import agent
import mailer
from database import db, create_document, get_documents, ensure_indexes, utcnow, as_aware, OTP_TTL_SECONDS
from schemas import User, Tool, Category, Notification, Theme, Verification, Question, DEFAULT_AVATAR, DEFAULT_MAX_ANS_LENGTH
from security import (
    CurrentUser,
    PASSWORD_RESET_PURPOSE,
    VERIFICATION_TOKEN_EXPIRE_MINUTES,
    create_access_token,
    create_verification_token,
    decode_token,
    find_one,
    get_current_admin,
    get_current_user,
    get_optional_user,
    get_password_hash,
    to_object_id,
    verify_password,
)

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

UPLOAD_DIR = os.getenv("UPLOAD_DIR", "public")
COOKIE_SECURE = os.getenv("ENVIRONMENT", "development") == "production"
VERIFICATION_COOKIE = "verification-token"
OTP_RESEND_COOLDOWN_SECONDS = 30
PRO_PLAN_NOTIFICATION_INTERVAL = timedelta(minutes=10)
MAX_PROFILE_PICTURE_BYTES = 5 * 1024 * 1024


@asynccontextmanager
async def lifespan(app: FastAPI):
    ensure_indexes()
    os.makedirs(os.path.join(UPLOAD_DIR, "profile"), exist_ok=True)
    yield


# App setup
app = FastAPI(title="ExecInnov API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.mount("/profile", StaticFiles(directory=os.path.join(UPLOAD_DIR, "profile"), check_dir=False), name="profile")


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": jsonable_encoder(exc.errors())})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# Serializers
def iso(value):
    value = as_aware(value)
    return value.isoformat() if value else None


def serialize_user(doc: dict) -> dict:
    return {
        "id": str(doc["_id"]),
        "name": doc.get("name"),
        "email": doc.get("email"),
        "image": doc.get("image", DEFAULT_AVATAR),
        "is_admin": doc.get("is_admin", False),
        "subscription": doc.get("subscription", "Free"),
        "email_verified": doc.get("email_verified", False),
        "created_at": iso(doc.get("created_at")),
        "updated_at": iso(doc.get("updated_at")),
    }


def serialize_category(doc: dict) -> dict:
    return {
        "id": str(doc["_id"]),
        "name": doc.get("name"),
        "is_active": doc.get("is_active", True),
        "created_at": iso(doc.get("created_at")),
        "updated_at": iso(doc.get("updated_at")),
    }


def serialize_notification(doc: dict) -> dict:
    return {
        "id": str(doc["_id"]),
        "user_id": doc.get("user_id"),
        "title": doc.get("title"),
        "message": doc.get("message"),
        "type": doc.get("type"),
        "is_read": doc.get("is_read", False),
        "link": doc.get("link"),
        "created_at": iso(doc.get("created_at")),
    }


def category_refs(category_ids) -> dict:
    oids = [ObjectId(c) for c in set(category_ids) if c and ObjectId.is_valid(c)]
    if not oids:
        return {}
    return {
        str(c["_id"]): {"id": str(c["_id"]), "name": c.get("name")}
        for c in db["category"].find({"_id": {"$in": oids}})
    }


def serialize_tool(doc: dict, categories: dict, include_instructions: bool = False) -> dict:
    data = {
        "id": str(doc["_id"]),
        "title": doc.get("title"),
        "description": doc.get("description"),
        "is_pro": doc.get("is_pro", False),
        "is_active": doc.get("is_active", True),
        "category": categories.get(doc.get("category_id")),
        "questions_count": len(doc.get("questions") or []),
        "created_at": iso(doc.get("created_at")),
        "updated_at": iso(doc.get("updated_at")),
    }
    if include_instructions:
        data["system_instructions"] = doc.get("system_instructions")
    return data


def serialize_tool_detail(doc: dict, include_instructions: bool) -> dict:
    data = serialize_tool(doc, category_refs([doc.get("category_id")]), include_instructions)
    data["questions"] = [
        {
            "question": q.get("question"),
            "answer": q.get("answer") or "",
            "max_ans_length": q.get("max_ans_length") or DEFAULT_MAX_ANS_LENGTH,
        }
        for q in doc.get("questions") or []
    ]
    return data


def theme_payload(doc: dict) -> dict:
    return {
        "success": True,
        "data": {
            "custom_primary": doc["custom_primary"],
            "custom_secondary": doc["custom_secondary"],
            "custom_tertiary": doc["custom_tertiary"],
        },
    }


# OTP helpers
def otp_is_expired(verification: dict) -> bool:
    created_at = as_aware(verification.get("created_at"))
    return created_at is None or utcnow() - created_at > timedelta(seconds=OTP_TTL_SECONDS)


def issue_otp(email: str, reset_for: Optional[dict] = None, enforce_cooldown: bool = True):
    """Replace any pending OTP for `email` and mail the new one."""
    existing = db["verification"].find_one({"email": email})
    if existing:
        age = (utcnow() - as_aware(existing["created_at"])).total_seconds()
        if enforce_cooldown and age < OTP_RESEND_COOLDOWN_SECONDS:
            wait = math.ceil(OTP_RESEND_COOLDOWN_SECONDS - age)
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail=f"Please wait {wait} seconds before requesting a new OTP",
                headers={"Retry-After": str(wait)},
            )
        db["verification"].delete_one({"email": email})

    otp = mailer.generate_otp()
    if reset_for is not None:
        sent = mailer.send_password_reset_email(email, otp, reset_for.get("name", ""))
    else:
        sent = mailer.send_verification_email(email, otp)
    if not sent:
        logger.warning("OTP for %s stored but the email was not delivered", email)
    logger.debug("OTP for %s: %s", email, otp)

    create_document("verification", Verification(email=email, otp=otp))


def check_otp(email: str, otp: str) -> dict:
    verification = db["verification"].find_one({"email": email})
    if not verification or otp_is_expired(verification):
        raise HTTPException(status_code=400, detail="OTP expired")
    if verification["otp"] != otp:
        raise HTTPException(status_code=400, detail="Invalid OTP")
    return verification


# Routes
@app.get("/")
def read_root():
    return {"message": "ExecInnov API running"}


@app.get("/test")
def test_database():
    """Test endpoint to check if database is available and accessible"""
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": []
    }
    if db is None:
        return response
    try:
        response["collections"] = db.list_collection_names()[:10]
        response["database"] = "✅ Connected & Working"
        response["connection_status"] = "Connected"
    except Exception as e:
        logger.warning("Database check failed: %s", e)
        response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"
    return response


# Auth Endpoints
class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


# Names are trimmed; passwords are hashed exactly as typed
UserName = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=100)]


class SignupPayload(BaseModel):
    name: UserName
    email: EmailStr
    password: str = Field(..., min_length=4, max_length=32)
    confirm_password: str = Field(..., min_length=4, max_length=32)

    @model_validator(mode="after")
    def passwords_match(self):
        if self.password != self.confirm_password:
            raise ValueError("Passwords do not match")
        return self


class LoginPayload(BaseModel):
    email: EmailStr
    password: str


class VerifyPayload(BaseModel):
    email: EmailStr
    otp: str = Field(..., min_length=1)


class ResetPasswordPayload(BaseModel):
    new_password: str = Field(..., min_length=6)
    confirm_password: str = Field(..., min_length=1)

    @model_validator(mode="after")
    def passwords_match(self):
        if self.new_password != self.confirm_password:
            raise ValueError("Passwords don't match")
        return self


@app.post("/auth/signup", status_code=status.HTTP_201_CREATED)
def signup(payload: SignupPayload):
    if find_one("user", {"email": payload.email}):
        raise HTTPException(status_code=400, detail="Email already registered")

    user_doc = User(
        name=payload.name,
        email=payload.email,
        password_hash=get_password_hash(payload.password),
    )
    try:
        create_document("user", user_doc)
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="Email already registered")
    logger.info("New user signed up: %s", payload.email)

    issue_otp(payload.email, enforce_cooldown=False)
    return {"message": "User created successfully"}


@app.post("/auth/admin-signup", status_code=status.HTTP_201_CREATED)
def admin_signup(payload: SignupPayload):
    # Bootstrap only; once an admin exists new admins come from POST /users
    if db["user"].count_documents({"is_admin": True}) > 0:
        raise HTTPException(status_code=403, detail="An admin already exists")
    if find_one("user", {"email": payload.email}):
        raise HTTPException(status_code=400, detail="Email already registered")

    user_doc = User(
        name=payload.name,
        email=payload.email,
        password_hash=get_password_hash(payload.password),
        is_admin=True,
        email_verified=True,
    )
    create_document("user", user_doc)
    logger.info("Bootstrap admin created: %s", payload.email)
    return {"message": "Admin created successfully"}


@app.post("/auth/login", response_model=Token)
def login(payload: LoginPayload):
    user = find_one("user", {"email": payload.email})
    if not user or not verify_password(payload.password, user["password_hash"]):
        logger.info("Failed login attempt for %s", payload.email)
        raise HTTPException(status_code=400, detail="Incorrect email or password")

    token = create_access_token({"sub": str(user["_id"]), "is_admin": user.get("is_admin", False)})
    return Token(access_token=token)


@app.get("/auth/verify")
def send_otp(email: EmailStr, purpose: Literal["verify", "reset"] = "verify"):
    reset_for = None
    if purpose == "reset":
        reset_for = find_one("user", {"email": email})
        if not reset_for:
            raise HTTPException(status_code=404, detail="User not found")
    issue_otp(email, reset_for=reset_for)
    return {"message": "OTP sent to email"}


@app.post("/auth/verify")
def verify_otp(payload: VerifyPayload, response: Response, token: bool = False):
    check_otp(payload.email, payload.otp)

    user = db["user"].find_one_and_update(
        {"email": payload.email},
        {"$set": {"email_verified": True, "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    db["verification"].delete_one({"email": payload.email})

    if token:
        response.set_cookie(
            key=VERIFICATION_COOKIE,
            value=create_verification_token(user),
            max_age=VERIFICATION_TOKEN_EXPIRE_MINUTES * 60,
            path="/",
            secure=COOKIE_SECURE,
            httponly=True,
            samesite="strict",
        )
        return {"message": "OTP verified successfully"}

    return {"message": "Email verified successfully"}


@app.patch("/auth/reset-password")
def reset_password(
    payload: ResetPasswordPayload,
    response: Response,
    verification_token: Optional[str] = Cookie(default=None, alias=VERIFICATION_COOKIE),
):
    if not verification_token:
        raise HTTPException(status_code=401, detail="Verification token not found")
    try:
        claims = decode_token(verification_token)
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid or expired verification token")
    if claims.get("purpose") != PASSWORD_RESET_PURPOSE or not claims.get("sub"):
        raise HTTPException(status_code=401, detail="Invalid or expired verification token")

    user_id = to_object_id(claims["sub"], "User")
    result = db["user"].update_one(
        {"_id": user_id},
        {"$set": {"password_hash": get_password_hash(payload.new_password), "updated_at": utcnow()}},
    )
    if result.matched_count == 0:
        raise HTTPException(status_code=404, detail="User not found")

    response.delete_cookie(VERIFICATION_COOKIE, path="/", secure=COOKIE_SECURE, httponly=True, samesite="strict")
    return {"message": "Password reset successfully"}


# User Endpoints
class UserCreate(BaseModel):
    name: UserName
    email: EmailStr
    password: str = Field(..., min_length=4, max_length=32)
    is_admin: bool = False


class UserUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    current_password: str = Field(..., min_length=1, max_length=100)
    new_password: Optional[str] = Field(None, min_length=1, max_length=100)
    otp: str = Field(..., min_length=1, max_length=6)

    @model_validator(mode="after")
    def something_to_change(self):
        if not (self.name and self.name.strip()) and not (self.new_password and self.new_password.strip()):
            raise ValueError("At least one of name or new password must be provided.")
        return self


def require_self(user_id: str, current: CurrentUser):
    if current.id != user_id:
        raise HTTPException(status_code=403, detail="You can only modify your own account")


def remove_profile_file(image: Optional[str]):
    if not image or image == DEFAULT_AVATAR or not image.startswith("/profile/"):
        return
    path = os.path.join(UPLOAD_DIR, image.lstrip("/"))
    try:
        os.remove(path)
    except OSError as e:
        logger.warning("Could not delete old profile picture %s: %s", path, e)


@app.get("/users/me")
def get_me(current: CurrentUser = Depends(get_current_user)):
    user = find_one("user", {"_id": ObjectId(current.id)})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return serialize_user(user)


@app.get("/users")
def list_users(
    filter: Optional[Literal["admin", "regular"]] = None,
    admin: CurrentUser = Depends(get_current_admin),
):
    query = {}
    if filter == "admin":
        query = {"is_admin": True}
    elif filter == "regular":
        query = {"is_admin": False}
    users = get_documents("user", query, sort=[("created_at", -1)])
    return {"users": [serialize_user(u) for u in users]}


@app.post("/users", status_code=status.HTTP_201_CREATED)
def create_user(payload: UserCreate, admin: CurrentUser = Depends(get_current_admin)):
    if find_one("user", {"email": payload.email}):
        raise HTTPException(status_code=400, detail="User with this email already exists")

    user_doc = User(
        name=payload.name,
        email=payload.email,
        password_hash=get_password_hash(payload.password),
        is_admin=payload.is_admin,
        email_verified=True,
    )
    user_id = create_document("user", user_doc)
    logger.info("%s created %s %s", admin.email, "admin" if payload.is_admin else "user", payload.email)
    created = db["user"].find_one({"_id": ObjectId(user_id)})
    return {
        "message": f"{'Admin' if payload.is_admin else 'User'} created successfully",
        "user": serialize_user(created),
    }


@app.patch("/users/{user_id}")
def update_user(user_id: str, data: UserUpdate, current: CurrentUser = Depends(get_current_user)):
    require_self(user_id, current)
    user = find_one("user", {"_id": to_object_id(user_id, "User")})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    check_otp(user["email"], data.otp)
    if not verify_password(data.current_password, user["password_hash"]):
        raise HTTPException(status_code=400, detail="Invalid current password")

    updates = {"updated_at": utcnow()}
    if data.name and data.name.strip():
        updates["name"] = data.name.strip()
    if data.new_password:
        updates["password_hash"] = get_password_hash(data.new_password)
    db["user"].update_one({"_id": user["_id"]}, {"$set": updates})
    db["verification"].delete_one({"email": user["email"]})
    return {"message": "User updated successfully"}


@app.post("/users/{user_id}/profile-picture")
def upload_profile_picture(
    user_id: str,
    profile_picture: UploadFile = File(...),
    current: CurrentUser = Depends(get_current_user),
):
    require_self(user_id, current)
    if not (profile_picture.content_type or "").startswith("image/"):
        raise HTTPException(status_code=400, detail="Only image files are allowed")

    contents = profile_picture.file.read(MAX_PROFILE_PICTURE_BYTES + 1)
    if len(contents) > MAX_PROFILE_PICTURE_BYTES:
        raise HTTPException(status_code=400, detail="File size must be less than 5MB")

    user = find_one("user", {"_id": to_object_id(user_id, "User")})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    extension = re.sub(r"[^A-Za-z0-9]", "", os.path.splitext(profile_picture.filename or "")[1]) or "png"
    file_name = f"profile_{user_id}_{int(time.time() * 1000)}.{extension.lower()}"
    directory = os.path.join(UPLOAD_DIR, "profile")
    os.makedirs(directory, exist_ok=True)
    with open(os.path.join(directory, file_name), "wb") as f:
        f.write(contents)

    remove_profile_file(user.get("image"))
    image_url = f"/profile/{file_name}"
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"image": image_url, "updated_at": utcnow()}})
    return {"message": "Profile picture updated successfully", "image_url": image_url}


@app.delete("/users/{user_id}/profile-picture")
def delete_profile_picture(user_id: str, current: CurrentUser = Depends(get_current_user)):
    require_self(user_id, current)
    user = find_one("user", {"_id": to_object_id(user_id, "User")})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    remove_profile_file(user.get("image"))
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"image": DEFAULT_AVATAR, "updated_at": utcnow()}})
    return {"message": "Profile picture removed successfully", "image_url": DEFAULT_AVATAR}


# Tool Endpoints
class ToolPayload(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    system_instructions: str = Field(..., min_length=1)
    questions: List[Question] = Field(..., min_length=1)
    is_pro: bool = False
    is_active: bool = True
    category_id: str = Field(..., min_length=1)


def visible_tools_filter(current: CurrentUser) -> dict:
    """Admins see everything; everyone else sees active tools they own or admins published."""
    if current.is_admin:
        return {}
    admin_ids = [str(u["_id"]) for u in db["user"].find({"is_admin": True}, {"_id": 1})]
    return {
        "is_active": True,
        "$or": [
            {"user_id": current.id},
            {"user_id": {"$in": admin_ids}},
            {"user_id": {"$exists": False}},
        ],
    }


def require_category(category_id: str) -> dict:
    category = None
    if ObjectId.is_valid(category_id):
        category = db["category"].find_one({"_id": ObjectId(category_id)})
    if not category:
        raise HTTPException(status_code=400, detail="Invalid category selected")
    return category


def tool_summary(doc: dict, category: dict) -> dict:
    return {
        "id": str(doc["_id"]),
        "title": doc["title"],
        "description": doc["description"],
        "category": {"id": str(category["_id"]), "name": category["name"]},
        "questions_count": len(doc["questions"]),
        "is_pro": doc["is_pro"],
        "is_active": doc["is_active"],
    }


@app.get("/tools")
def list_tools(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    category: Optional[str] = None,
    search: Optional[str] = None,
    current: CurrentUser = Depends(get_current_user),
):
    clauses = []
    visible = visible_tools_filter(current)
    if visible:
        clauses.append(visible)
    if category:
        # Stored references are lowercase hex
        category_id = str(ObjectId(category)) if ObjectId.is_valid(category) else category
        clauses.append({"category_id": category_id})
    if search and search.strip():
        pattern = re.escape(search.strip())
        clauses.append({"$or": [
            {"title": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
        ]})
    query = {"$and": clauses} if clauses else {}

    total_tools = db["tool"].count_documents(query)
    docs = list(db["tool"].find(query).sort("created_at", -1).skip((page - 1) * limit).limit(limit))
    categories = category_refs(d.get("category_id") for d in docs)

    total_pages = math.ceil(total_tools / limit)
    return {
        "tools": [serialize_tool(d, categories, include_instructions=current.is_admin) for d in docs],
        "pagination": {
            "current_page": page,
            "total_pages": total_pages,
            "total_tools": total_tools,
            "has_more": page < total_pages,
            "limit": limit,
        },
    }


@app.post("/tools", status_code=status.HTTP_201_CREATED)
def create_tool(data: ToolPayload, current: CurrentUser = Depends(get_current_user)):
    category = require_category(data.category_id)
    tool = Tool(**{**data.model_dump(), "category_id": str(category["_id"])}, user_id=current.id)
    tool_id = create_document("tool", tool)
    created = db["tool"].find_one({"_id": ObjectId(tool_id)})
    return tool_summary(created, category)


@app.get("/tools/{tool_id}")
def get_tool(tool_id: str, current: CurrentUser = Depends(get_current_user)):
    query = {"_id": to_object_id(tool_id, "Tool"), **visible_tools_filter(current)}
    tool = db["tool"].find_one(query)
    if not tool:
        raise HTTPException(status_code=404, detail="Tool not found")
    return serialize_tool_detail(tool, include_instructions=current.is_admin or tool.get("user_id") == current.id)


@app.patch("/tools/{tool_id}")
def update_tool(tool_id: str, data: ToolPayload, admin: CurrentUser = Depends(get_current_admin)):
    oid = to_object_id(tool_id, "Tool")
    if not db["tool"].find_one({"_id": oid}):
        raise HTTPException(status_code=404, detail="Tool not found")
    category = require_category(data.category_id)

    updated = db["tool"].find_one_and_update(
        {"_id": oid},
        {"$set": {**data.model_dump(), "category_id": str(category["_id"]), "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    return tool_summary(updated, category)


@app.delete("/tools/{tool_id}")
def delete_tool(tool_id: str, admin: CurrentUser = Depends(get_current_admin)):
    res = db["tool"].delete_one({"_id": to_object_id(tool_id, "Tool")})
    if res.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Tool not found")
    logger.info("Tool %s deleted by %s", tool_id, admin.email)
    return {"message": "Tool deleted successfully"}


# Category Endpoints
class CategoryPayload(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1)
    is_active: bool = True


class CategoryUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1)
    is_active: bool


@app.get("/categories")
def list_categories(
    include_inactive: bool = Query(False, alias="all"),
    current: Optional[CurrentUser] = Depends(get_optional_user),
):
    query = {"is_active": True}
    if include_inactive:
        if not current or not current.is_admin:
            raise HTTPException(status_code=403, detail="Admin access required")
        query = {}
    categories = get_documents("category", query, sort=[("name", 1)])
    return {"categories": [serialize_category(c) for c in categories]}


@app.post("/categories", status_code=status.HTTP_201_CREATED)
def create_category(data: CategoryPayload, admin: CurrentUser = Depends(get_current_admin)):
    if find_one("category", {"name": data.name}):
        raise HTTPException(status_code=409, detail="Category name already exists")
    try:
        category_id = create_document("category", Category(**data.model_dump()))
    except DuplicateKeyError:
        raise HTTPException(status_code=409, detail="Category name already exists")
    return serialize_category(db["category"].find_one({"_id": ObjectId(category_id)}))


@app.patch("/categories/{category_id}")
def update_category(category_id: str, data: CategoryUpdate, admin: CurrentUser = Depends(get_current_admin)):
    oid = to_object_id(category_id, "Category")
    existing = find_one("category", {"_id": oid})
    if not existing:
        raise HTTPException(status_code=404, detail="Category not found")
    if data.name != existing["name"] and find_one("category", {"name": data.name, "_id": {"$ne": oid}}):
        raise HTTPException(status_code=409, detail="Category name already exists")

    updated = db["category"].find_one_and_update(
        {"_id": oid},
        {"$set": {**data.model_dump(), "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    return serialize_category(updated)


@app.delete("/categories/{category_id}")
def delete_category(category_id: str, admin: CurrentUser = Depends(get_current_admin)):
    oid = to_object_id(category_id, "Category")
    if not find_one("category", {"_id": oid}):
        raise HTTPException(status_code=404, detail="Category not found")

    in_use = db["tool"].count_documents({"category_id": str(oid)})
    if in_use > 0:
        raise HTTPException(
            status_code=409,
            detail=f"Cannot delete category. {in_use} tool(s) are using this category.",
        )

    db["category"].delete_one({"_id": oid})
    return {"message": "Category deleted successfully"}


# Notification Endpoints
class MarkReadPayload(BaseModel):
    notification_ids: List[str]


@app.get("/notifications")
def list_notifications(current: CurrentUser = Depends(get_current_user)):
    docs = get_documents("notification", {"user_id": current.id}, sort=[("created_at", -1)])
    return [serialize_notification(d) for d in docs]


@app.patch("/notifications")
def mark_notifications_read(data: MarkReadPayload, current: CurrentUser = Depends(get_current_user)):
    oids = [ObjectId(i) for i in data.notification_ids if ObjectId.is_valid(i)]
    res = db["notification"].update_many(
        {"_id": {"$in": oids}, "user_id": current.id},
        {"$set": {"is_read": True}},
    )
    return {"success": True, "updated": res.modified_count}


@app.patch("/notifications/{notification_id}")
def mark_notification_read(notification_id: str, current: CurrentUser = Depends(get_current_user)):
    doc = db["notification"].find_one_and_update(
        {"_id": to_object_id(notification_id, "Notification"), "user_id": current.id},
        {"$set": {"is_read": True}},
        return_document=ReturnDocument.AFTER,
    )
    if not doc:
        raise HTTPException(status_code=404, detail="Notification not found")
    return serialize_notification(doc)


@app.post("/notifications/pro-plan")
def send_pro_plan_notification(current: CurrentUser = Depends(get_current_user)):
    if current.subscription != "Free":
        return {"message": "User is not on free plan"}

    latest = db["notification"].find_one(
        {"user_id": current.id, "type": "pro_plan"},
        sort=[("created_at", -1)],
    )
    if latest and utcnow() - as_aware(latest["created_at"]) < PRO_PLAN_NOTIFICATION_INTERVAL:
        return {"message": "Recent notification exists"}

    notification = Notification(
        user_id=current.id,
        title="Upgrade to Pro Plan",
        message="Create unlimited AI tools and unlock premium features with our Pro Plan!",
        type="pro_plan",
        link="/billing",
    )
    notification_id = create_document("notification", notification)
    return serialize_notification(db["notification"].find_one({"_id": ObjectId(notification_id)}))


# Theme Endpoints
class ThemeUpdate(BaseModel):
    custom_primary: Optional[str] = Field(None, max_length=32)
    custom_secondary: Optional[str] = Field(None, max_length=32)
    custom_tertiary: Optional[str] = Field(None, max_length=32)


def get_or_create_theme() -> dict:
    theme = db["theme"].find_one()
    if not theme:
        create_document("theme", Theme())
        theme = db["theme"].find_one()
    return theme


@app.get("/theme")
def get_theme():
    return theme_payload(get_or_create_theme())


@app.patch("/theme")
def update_theme(data: ThemeUpdate, admin: CurrentUser = Depends(get_current_admin)):
    theme = get_or_create_theme()
    updates = {k: v for k, v in data.model_dump(exclude_none=True).items() if v.strip()}
    if updates:
        theme = db["theme"].find_one_and_update(
            {"_id": theme["_id"]},
            {"$set": {**updates, "updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
    return theme_payload(theme)


# Agent Endpoints
class AnsweredQuestion(BaseModel):
    question: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
    answer: str = Field(..., min_length=1)


class AgentRequest(BaseModel):
    tool_id: str = Field(..., min_length=1)
    questions: List[AnsweredQuestion] = Field(..., min_length=1)


class CreateToolRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    category_id: str = Field(..., min_length=1)
    expectations: str = Field(..., min_length=1)


@app.post("/agent")
def run_agent(data: AgentRequest, current: CurrentUser = Depends(get_current_user)):
    query = {"_id": to_object_id(data.tool_id, "Tool"), **visible_tools_filter(current)}
    tool = db["tool"].find_one(query)
    if not tool:
        raise HTTPException(status_code=404, detail="Tool not found")

    limits = {q["question"]: q.get("max_ans_length") for q in tool.get("questions") or []}
    for item in data.questions:
        if item.question not in limits:
            raise HTTPException(status_code=400, detail=f"Unknown question '{item.question}' for this tool")
        limit = limits[item.question] or DEFAULT_MAX_ANS_LENGTH
        if len(item.answer) > limit:
            raise HTTPException(status_code=400, detail=f"Answer to '{item.question}' exceeds {limit} characters")

    try:
        reply = agent.generate_response(
            tool["system_instructions"],
            [q.model_dump() for q in data.questions],
            current.name,
        )
    except Exception:
        logger.exception("Agent call failed for tool %s", data.tool_id)
        raise HTTPException(status_code=500, detail="System Error Occured")

    create_document("notification", Notification(
        user_id=current.id,
        title="AI Results Ready",
        message=f"Your results for {tool['title']} are ready to view",
        type="ai_completion",
        link=f"/tools/{data.tool_id}",
    ))
    return {"response": reply}


@app.post("/agent/create-tool", status_code=status.HTTP_201_CREATED)
def generate_tool(data: CreateToolRequest, current: CurrentUser = Depends(get_current_user)):
    category = require_category(data.category_id)
    try:
        generated = agent.generate_tool(data.title, data.description, data.expectations)
    except Exception:
        logger.exception("Tool generation failed for %r", data.title)
        raise HTTPException(status_code=500, detail="Failed to generate tool")
    if not generated or not generated.questions:
        raise HTTPException(status_code=500, detail="Failed to generate tool")

    tool = Tool(
        title=data.title,
        description=data.description,
        system_instructions=generated.system_instructions,
        questions=[Question(question=q) for q in generated.questions],
        category_id=str(category["_id"]),
        user_id=current.id,
    )
    tool_id = create_document("tool", tool)
    created = db["tool"].find_one({"_id": ObjectId(tool_id)})
    return {"message": "Tool created successfully", "tool": tool_summary(created, category)}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
