import logging
from datetime import timedelta, datetime, timezone
from typing import Annotated, Optional
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session
from starlette import status
from docportal.model.model import Users
from docportal.model.schemas import AuthResponse, MessageResponse, UserOut
from docportal.utils.config import (
    BCRYPT_ROUNDS,
    JWT_ALGORITHM,
    JWT_EXPIRE_MINUTES,
    JWT_SECRET,
    PASSWORD_MIN_LENGTH,
)
from docportal.utils.database import get_db
from passlib.context import CryptContext
from fastapi.security import OAuth2PasswordRequestForm, OAuth2PasswordBearer
from jose import jwt, JWTError

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api",
    tags=["auth"]
)

bcrypt_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=BCRYPT_ROUNDS)
oauth2_bearer = OAuth2PasswordBearer(tokenUrl="api/auth/token", auto_error=False)


class SignupRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None
    firstName: str = ""
    lastName: str = ""


class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class Token(BaseModel):
    access_token: str
    token_type: str


db_dependency = Annotated[Session, Depends(get_db)]


def normalize_email(email: str) -> str:
    return email.strip().lower()


def hash_password(password: str) -> str:
    return bcrypt_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    return bcrypt_context.verify(plain, hashed)


def create_access_token(user_id: str, email: str, expires_delta: Optional[timedelta] = None) -> str:
    expires = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=JWT_EXPIRE_MINUTES))
    encode = {'sub': user_id, 'email': email, 'exp': expires}
    return jwt.encode(encode, JWT_SECRET, algorithm=JWT_ALGORITHM)


def authenticate_user(email: str, password: str, db: Session):
    """
    Return the user for these credentials, or None.
    """
    user = db.query(Users).filter(Users.email == normalize_email(email)).first()
    if not user or not user.password_hash:
        return None
    if not verify_password(password, user.password_hash):
        return None
    return user


@router.post("/signup", status_code=status.HTTP_201_CREATED, response_model=AuthResponse)
def signup(request: SignupRequest, db: db_dependency):
    if not request.email or not request.password:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email and password required"
        )
    email = normalize_email(request.email)
    local, _, domain = email.partition("@")
    if not local or "." not in domain:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid email address"
        )
    if len(request.password) < PASSWORD_MIN_LENGTH:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Password must be at least {PASSWORD_MIN_LENGTH} characters"
        )
    if db.query(Users).filter(Users.email == email).first():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="User already exists"
        )

    user = Users(
        email=email,
        first_name=request.firstName,
        last_name=request.lastName,
        password_hash=hash_password(request.password)
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("Registered user %s", user.id)

    return {"token": create_access_token(user.id, user.email), "user": UserOut.model_validate(user)}


@router.post("/login", response_model=AuthResponse)
def login(request: LoginRequest, db: db_dependency):
    if not request.email or not request.password:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email and password required"
        )
    user = authenticate_user(request.email, request.password, db)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials"
        )
    return {"token": create_access_token(user.id, user.email), "user": UserOut.model_validate(user)}


@router.post("/auth/token", response_model=Token)
def login_for_access_token(form_data: Annotated[OAuth2PasswordRequestForm, Depends()],
                           db: db_dependency):
    """
    OAuth2 password flow; `username` carries the email.
    """
    user = authenticate_user(form_data.username, form_data.password, db)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
        )
    return {
        'access_token': create_access_token(user.id, user.email),
        'token_type': 'bearer'
    }


@router.get("/logout", response_model=MessageResponse)
def logout():
    # tokens are stateless, the client discards its copy
    return {"message": "Logged out successfully"}


async def get_current_user(token: Annotated[Optional[str], Depends(oauth2_bearer)]):
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except JWTError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc
    user_id = payload.get('sub')
    email = payload.get('email')
    if user_id is None or email is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return {'id': user_id, 'email': email}


user_dependency = Annotated[dict, Depends(get_current_user)]


def get_active_user(user: user_dependency, db: db_dependency):
    """
    Require that the token's subject still exists before anything is written on its behalf.
    """
    if db.query(Users.id).filter(Users.id == user['id']).first() is None:
        logger.warning("Rejected token for unknown user %s", user['id'])
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


active_user_dependency = Annotated[dict, Depends(get_active_user)]


@router.get("/auth/user", response_model=UserOut)
def read_current_user(user: user_dependency, db: db_dependency):
    result = db.query(Users).filter(Users.id == user['id']).first()
    if result is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )
    return result
