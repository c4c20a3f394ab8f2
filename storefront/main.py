import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from .dependencies import get_current_user, get_db
from .errors import AuthenticationRequired, Conflict
from .models import RoleEnum, User
from .schemas import UserCreate, UserLogin, UserOut
from .security import hash_password, token_for_user, verify_password

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/register", status_code=status.HTTP_201_CREATED)
def register_user(user_in: UserCreate, db: Session = Depends(get_db)):
    # check existing user
    if db.query(User).filter(User.email == user_in.email).first():
        raise Conflict("User with this email already exists")

    data = user_in.model_dump(exclude={"password"})
    user = User(
        **data,
        hashed_password=hash_password(user_in.password),
        role=RoleEnum.USER,
    )

    db.add(user)
    db.commit()
    db.refresh(user)

    logger.info("User %s registered", user.id)
    return {
        "success": True,
        "message": "User registered successfully",
        "data": {
            "user": UserOut.model_validate(user),
            "token": token_for_user(user),
        },
    }


@router.post("/login", status_code=status.HTTP_200_OK)
def login_user(user_in: UserLogin, db: Session = Depends(get_db)):
    user = db.query(User).filter(User.email == user_in.email).first()

    # User not found or password incorrect
    if not user or not verify_password(user_in.password, user.hashed_password):
        raise AuthenticationRequired("Invalid email or password")

    return {
        "success": True,
        "message": "Login successful",
        "data": {
            "user": UserOut.model_validate(user),
            "token": token_for_user(user),
            "tokenType": "bearer",
        },
    }


@router.get("/profile")
def read_profile(current_user: User = Depends(get_current_user)):
    return {
        "success": True,
        "message": "Profile retrieved successfully",
        "data": {"user": UserOut.model_validate(current_user)},
    }
