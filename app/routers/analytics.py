from fastapi import APIRouter, Depends
from sqlalchemy import func
from sqlalchemy.orm import Session

from app.database import get_db
from app.deps import get_current_user
from app.models import Conversation, Message, TelegramUser

router = APIRouter(prefix="/analytics", tags=["analytics"], dependencies=[Depends(get_current_user)])


def _as_naive(value):
    return value.replace(tzinfo=None) if value is not None and value.tzinfo else value


def average_first_response_seconds(db: Session) -> float | None:
    """Mean delay between a conversation's first sender message and first operator reply."""
    first_inbound = dict(
        db.query(Message.conversation_id, func.min(Message.created_at))
        .filter(Message.from_operator.is_(False))
        .group_by(Message.conversation_id)
        .all()
    )
    first_reply = dict(
        db.query(Message.conversation_id, func.min(Message.created_at))
        .filter(Message.from_operator.is_(True))
        .group_by(Message.conversation_id)
        .all()
    )
    delays = []
    for conversation_id, inbound_at in first_inbound.items():
        reply_at = first_reply.get(conversation_id)
        if reply_at is None:
            continue
        delay = (_as_naive(reply_at) - _as_naive(inbound_at)).total_seconds()
        if delay >= 0:
            delays.append(delay)
    if not delays:
        return None
    return round(sum(delays) / len(delays), 1)


@router.get("/overall")
def overall(db: Session = Depends(get_db)):
    by_status = dict(db.query(Conversation.status, func.count(Conversation.id)).group_by(Conversation.status).all())
    by_direction = dict(
        db.query(Message.from_operator, func.count(Message.id)).group_by(Message.from_operator).all()
    )
    return {
        "conversations": {
            "total": sum(by_status.values()),
            "waiting": by_status.get("waiting", 0),
            "active": by_status.get("active", 0),
            "closed": by_status.get("closed", 0),
        },
        "messages": {
            "total": sum(by_direction.values()),
            "from_users": by_direction.get(False, 0),
            "from_operators": by_direction.get(True, 0),
        },
        "telegram_users": {
            "total": db.query(TelegramUser).count(),
            "blocked": db.query(TelegramUser).filter(TelegramUser.is_blocked.is_(True)).count(),
        },
        "average_first_response_seconds": average_first_response_seconds(db),
    }
