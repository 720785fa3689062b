# healthwallet/routers/profile.py
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from healthwallet.db.session import get_db
from healthwallet.auth.deps import get_current_user
from healthwallet.models.health_record import utcnow
from healthwallet.models.user import User, UserProfile, calculate_age
from healthwallet.schemas.profile import UserProfileIn, UserProfileOut

router = APIRouter(prefix="/api/profile", tags=["profile"])


def _out(prof: UserProfile) -> UserProfileOut:
    out = UserProfileOut.model_validate(prof, from_attributes=True)
    out.age = calculate_age(prof.date_of_birth)
    return out


@router.get("/", response_model=UserProfileOut)
def get_profile(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    prof = db.query(UserProfile).filter(UserProfile.user_id == str(user.id)).first()
    if not prof:
        # create an empty profile on first read
        prof = UserProfile(user_id=str(user.id), dietary_preference="omnivore", updated_at=utcnow())
        db.add(prof)
        db.commit()
        db.refresh(prof)
    return _out(prof)


@router.put("/", response_model=UserProfileOut)
def upsert_profile(
    payload: UserProfileIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    prof = db.query(UserProfile).filter(UserProfile.user_id == str(user.id)).first()
    if not prof:
        prof = UserProfile(user_id=str(user.id), dietary_preference="omnivore")

    # only fields the client sent are changed
    for field, value in payload.model_dump(exclude_unset=True).items():
        if field == "dietary_preference" and value is None:
            value = "omnivore"
        setattr(prof, field, value)
    prof.updated_at = utcnow()

    db.add(prof)
    db.commit()
    db.refresh(prof)
    return _out(prof)
