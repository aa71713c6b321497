from app.schemas.conversation import ConversationListResponse, ConversationResponse
from app.schemas.message import MessageResponse, SendMessageRequest
from app.schemas.user import UserResponse, UserSettings

__all__ = [
    "ConversationResponse",
    "ConversationListResponse",
    "MessageResponse",
    "SendMessageRequest",
    "UserResponse",
    "UserSettings",
]
