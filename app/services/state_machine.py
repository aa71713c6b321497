from enum import Enum


class ConversationStatus(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    CLOSED = "closed"


OPEN_STATUSES = (ConversationStatus.WAITING, ConversationStatus.ACTIVE)

VALID_TRANSITIONS = {
    ConversationStatus.WAITING: [ConversationStatus.ACTIVE, ConversationStatus.CLOSED],
    ConversationStatus.ACTIVE: [ConversationStatus.CLOSED, ConversationStatus.WAITING],
    ConversationStatus.CLOSED: [ConversationStatus.ACTIVE],
}


class InvalidTransitionError(Exception):
    def __init__(self, from_status: ConversationStatus, to_status: ConversationStatus):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Invalid transition: {from_status.value} -> {to_status.value}")


def is_open(status: ConversationStatus) -> bool:
    return status in OPEN_STATUSES


def can_transition(from_status: ConversationStatus, to_status: ConversationStatus) -> bool:
    """Check if transition is valid."""
    allowed = VALID_TRANSITIONS.get(from_status, [])
    return to_status in allowed


def transition(from_status: ConversationStatus, to_status: ConversationStatus) -> ConversationStatus:
    """Perform status transition. Raises InvalidTransitionError if not allowed."""
    if not can_transition(from_status, to_status):
        raise InvalidTransitionError(from_status, to_status)
    return to_status


def assign(current: ConversationStatus) -> ConversationStatus:
    """Operator takes the conversation; an active one stays active."""
    if current == ConversationStatus.ACTIVE:
        return current
    return transition(current, ConversationStatus.ACTIVE)


def close(current: ConversationStatus) -> ConversationStatus:
    return transition(current, ConversationStatus.CLOSED)
