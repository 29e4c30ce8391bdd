from fastapi import APIRouter, HTTPException, Depends
from fastapi.security import OAuth2PasswordBearer
from pydantic import BaseModel
from jose import JWTError, jwt
from passlib.context import CryptContext
import logging

import settings
from database import get_db

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

router = APIRouter(prefix="/api/auth", tags=["auth"])
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")

VALID_ROLES = {"admin", "hod", "teacher", "student"}


class LoginRequest(BaseModel):
    email: str
    password: str


def actor_from_user(user: dict) -> dict:
    return {
        "id": user["id"],
        "role": user["role"],
        "name": user.get("name"),
        "groups": user.get("groups", []),
        "department": user.get("department"),
    }


async def get_user_by_id(db, user_id: str):
    user = await db.users.find_one({"id": user_id, "isActive": {"$ne": False}}, {"_id": 0})
    if not user:
        logger.warning(f"User not found for id: {user_id}")
    return user


async def get_current_user(token: str = Depends(oauth2_scheme), db=Depends(get_db)):
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=["HS256"])
    except JWTError as e:
        logger.error(f"JWTError: {str(e)}")
        raise HTTPException(status_code=401, detail="Invalid token")
    user_id = payload.get("id")
    if not user_id or payload.get("role") not in VALID_ROLES:
        logger.error("Invalid token: Missing user_id or role")
        raise HTTPException(status_code=401, detail="Invalid token")
    user = await get_user_by_id(db, user_id)
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return actor_from_user(user)


@router.post("/login/")
async def login(request: LoginRequest, db=Depends(get_db)):
    logger.info(f"Login attempt for email: {request.email}")
    user = await db.users.find_one({"email": request.email}, {"_id": 0})

    if not user or not pwd_context.verify(request.password, user["password"]):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if user["role"] not in VALID_ROLES:
        raise HTTPException(status_code=403, detail="User does not have a platform role")
    if user.get("isActive") is False:
        logger.warning(f"Login refused for deactivated user {user['id']}")
        raise HTTPException(status_code=403, detail="Account is deactivated")

    token = jwt.encode({"id": user["id"], "role": user["role"]}, settings.JWT_SECRET, algorithm="HS256")
    return {
        "access_token": token,
        "token_type": "bearer",
        "user": actor_from_user(user),
    }


@router.get("/current-user")
async def get_current_user_endpoint(current_user: dict = Depends(get_current_user)):
    return current_user
