from app.services.conversation_service import (
    find_open_conversation,
    resolve_conversation,
)
from app.services.dispatch_service import dispatch
from app.services.ingestion_service import (
    handle_update,
    ingest_message,
)
from app.services.state_machine import (
    ConversationStatus,
    InvalidTransitionError,
    assign,
    can_transition,
    close,
    transition,
)
