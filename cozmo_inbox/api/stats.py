from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from cozmo_inbox.api.deps import get_db
from cozmo_inbox.schemas.stats import CategoryCount, ChannelCount, MessageStats
from cozmo_inbox.services import statistics

router = APIRouter(prefix="/stats", tags=["stats"])


@router.get("", response_model=MessageStats)
def get_stats(db: Session = Depends(get_db)):
    return statistics.message_stats(db)


@router.get("/channels", response_model=list[ChannelCount])
def get_channel_distribution(db: Session = Depends(get_db)):
    return statistics.channel_distribution(db)


@router.get("/categories", response_model=list[CategoryCount])
def get_category_distribution(db: Session = Depends(get_db)):
    return statistics.category_distribution(db)
