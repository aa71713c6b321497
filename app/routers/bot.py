from fastapi import APIRouter, Depends

from app.deps import get_bot_manager, get_current_user
from app.services.bot_manager import BotManager

router = APIRouter(prefix="/bot", tags=["bot"], dependencies=[Depends(get_current_user)])


@router.get("/status")
def bot_status(bot_manager: BotManager = Depends(get_bot_manager)):
    return {"status": bot_manager.status().value, "username": bot_manager.bot_username}
