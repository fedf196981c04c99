from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import Optional
import logging

from app.api.deps import get_current_user
from app.database import get_db
from app.models.profile import Profile
from app.schemas import ProfileResponse, ProfileUpdate

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/profile", response_model=Optional[ProfileResponse])
def get_profile(
    user_id: str = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """The caller's channel profile, or null if none was saved yet"""
    profile = db.query(Profile).filter(Profile.user_id == user_id).first()
    return ProfileResponse.model_validate(profile) if profile else None


@router.put("/profile", response_model=ProfileResponse)
def upsert_profile(
    body: ProfileUpdate,
    user_id: str = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    profile = db.query(Profile).filter(Profile.user_id == user_id).first()
    if profile is None:
        profile = Profile(user_id=user_id)
        db.add(profile)

    for name, value in body.model_dump().items():
        setattr(profile, name, value)
    db.commit()
    db.refresh(profile)

    logger.info(f"Profile saved for {user_id}")
    return ProfileResponse.model_validate(profile)
