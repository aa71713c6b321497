from sqlalchemy.orm import Session

from app.config import settings
from app.logging_config import get_logger
from app.models import MessageTemplate, User
from app.services.auth_service import hash_password

logger = get_logger("seed")

DEFAULT_TEMPLATES = [
    ("Greeting", "Hello! How can I help you?", "general"),
    ("Wait please", "Please wait a moment, I am checking the details.", "general"),
    ("Goodbye", "Thank you for contacting us! Have a nice day.", "closing"),
]


def seed_database(db: Session) -> bool:
    """Create the development admin and starter templates on an empty database."""
    if db.query(User).first() is not None:
        return False

    admin = User(
        email=settings.seed_admin_email.lower(),
        name="Administrator",
        password_hash=hash_password(settings.seed_admin_password),
        is_operator=True,
        is_admin=True,
        is_active=True,
    )
    db.add(admin)
    db.flush()
    for title, content, category in DEFAULT_TEMPLATES:
        db.add(MessageTemplate(title=title, content=content, category=category, user_id=admin.id))
    db.commit()
    logger.info("Development data seeded", extra={"context": {"admin_email": admin.email}})
    return True
