from app.models.conversation import Conversation
from app.models.message import Message
from app.models.message_edit import MessageEdit
from app.models.setting import Setting
from app.models.telegram_user import TelegramUser
from app.models.template import MessageTemplate
from app.models.user import User

__all__ = [
    "TelegramUser",
    "User",
    "Conversation",
    "Message",
    "MessageEdit",
    "MessageTemplate",
    "Setting",
]
