from typing import Optional

from sqlalchemy.orm import Session

from app.config import settings
from app.models import Setting
from app.models.setting import TELEGRAM_BOT_TOKEN_KEY


def get_setting(db: Session, key: str) -> Optional[str]:
    row = db.query(Setting).filter(Setting.key == key).first()
    return row.value if row else None


def set_setting(db: Session, key: str, value: Optional[str]) -> None:
    """Upsert a setting; ``None`` or empty deletes it."""
    row = db.query(Setting).filter(Setting.key == key).first()
    if not value:
        if row:
            db.delete(row)
    elif row:
        row.value = value
    else:
        db.add(Setting(key=key, value=value))
    db.commit()


def get_bot_token(db: Session) -> Optional[str]:
    """Stored token, falling back to TELEGRAM_BOT_TOKEN."""
    return get_setting(db, TELEGRAM_BOT_TOKEN_KEY) or settings.telegram_bot_token
