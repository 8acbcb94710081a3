from __future__ import annotations
import logging
from datetime import timedelta
from typing import Optional

import jwt
from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from passlib.context import CryptContext
from pydantic import BaseModel, EmailStr, Field

from config import settings
from database import get_db, to_object_id, utcnow
from schemas import User

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

TOKEN_COOKIE = "token"


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    return pwd_context.verify(password, hashed)


def create_token(user_id: str) -> str:
    payload = {
        "user_id": user_id,
        "exp": utcnow() + timedelta(days=settings.JWT_EXPIRES_DAYS),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm="HS256")


def decode_token(token: str) -> Optional[str]:
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=["HS256"])
    except jwt.PyJWTError:
        return None
    return payload.get("user_id")


def public_user(user: dict) -> dict:
    return {
        "id": str(user["_id"]),
        "name": user.get("name"),
        "email": user.get("email"),
        "phone": user.get("phone"),
        "role": user.get("role", "customer"),
    }


# ---------- Access control ----------

class AuthError(Exception):
    """Raised by the access dependencies; rendered as JSON or a redirect depending on the client."""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        self.message = message


def wants_json(request: Request) -> bool:
    if request.headers.get("x-requested-with", "").lower() == "xmlhttprequest":
        return True
    return "application/json" in request.headers.get("accept", "")


async def auth_error_handler(request: Request, exc: AuthError):
    if wants_json(request):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})
    if exc.status_code == 401:
        return RedirectResponse(url="/auth/login", status_code=303)
    return HTMLResponse(status_code=exc.status_code, content=f"<h1>Access Denied</h1><p>{exc.message}</p>")


async def get_current_user(request: Request) -> Optional[dict]:
    header = request.headers.get("authorization", "")
    if header.lower().startswith("bearer "):
        token = header[7:].strip()
    else:
        token = request.cookies.get(TOKEN_COOKIE)
    if not token:
        return None
    user_id = decode_token(token)
    if not user_id:
        return None
    try:
        _id = to_object_id(user_id)
    except HTTPException:
        return None
    db = await get_db()
    return await db["user"].find_one({"_id": _id})


async def require_user(user: Optional[dict] = Depends(get_current_user)) -> dict:
    if user is None:
        raise AuthError(401, "Authentication required")
    return user


async def require_admin(user: Optional[dict] = Depends(get_current_user)) -> dict:
    if user is None:
        raise AuthError(401, "Authentication required")
    if user.get("role") != "admin":
        raise AuthError(403, "Admin access required")
    return user


async def ensure_admin() -> None:
    """Create the bootstrap admin account from settings when it does not exist yet."""
    db = await get_db()
    existing = await db["user"].find_one({"email": settings.ADMIN_EMAIL})
    if existing:
        if existing.get("role") != "admin":
            await db["user"].update_one({"_id": existing["_id"]}, {"$set": {"role": "admin"}})
        return
    admin = User(
        name="Administrator",
        email=settings.ADMIN_EMAIL,
        password_hash=hash_password(settings.ADMIN_PASSWORD),
        role="admin",
    )
    now = utcnow()
    await db["user"].insert_one({**admin.model_dump(), "created_at": now, "updated_at": now})
    logger.info("Bootstrap admin %s created", settings.ADMIN_EMAIL)


# ---------- Endpoints ----------

class SignupRequest(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)
    phone: Optional[str] = None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


def _login_response(user: dict, response: Response) -> dict:
    token = create_token(str(user["_id"]))
    response.set_cookie(
        TOKEN_COOKIE,
        token,
        httponly=True,
        samesite="lax",
        secure=settings.ENVIRONMENT == "production",
        max_age=settings.JWT_EXPIRES_DAYS * 24 * 3600,
    )
    return {"user": public_user(user), "token": token}


@router.post("/signup", status_code=201)
async def signup(payload: SignupRequest, response: Response):
    db = await get_db()
    email = payload.email.lower()
    if await db["user"].find_one({"email": email}):
        raise HTTPException(status_code=400, detail="Email already registered")
    user = User(
        name=payload.name,
        email=email,
        password_hash=hash_password(payload.password),
        phone=payload.phone,
    )
    now = utcnow()
    result = await db["user"].insert_one({**user.model_dump(), "created_at": now, "updated_at": now})
    created = await db["user"].find_one({"_id": result.inserted_id})
    return _login_response(created, response)


@router.post("/login")
async def login(payload: LoginRequest, response: Response):
    db = await get_db()
    user = await db["user"].find_one({"email": payload.email.lower()})
    if not user or not verify_password(payload.password, user.get("password_hash", "")):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return _login_response(user, response)


@router.post("/logout")
async def logout(response: Response):
    response.delete_cookie(TOKEN_COOKIE)
    return {"message": "Logged out"}


@router.get("/me")
async def me(user: dict = Depends(require_user)):
    return public_user(user)
