from enum import Enum

class Role(str, Enum):
    PATIENT = "patient"
    DOCTOR = "doctor"

class ConsultationStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    INACTIVE = "inactive"

class MessageType(str, Enum):
    USER = "user"
    AI = "ai"

class StatusAction(str, Enum):
    # doctor-only status changes exposed through updateConsultationStatus
    REJECT = "reject"
    END = "end"

class SocketEvent(str, Enum):
    # client -> server
    JOIN = "join-consultation"
    LEAVE = "leave-consultation"
    SEND = "send-message"
    # server -> client
    JOINED = "joined"
    NEW_MESSAGE = "new-message"
    ERROR = "error"

AI_ROLE_LABEL = "AI"
MEMORY_KEY_PREFIX = "ai:memory"
CONTEXT_KEY_PREFIX = "ai:context"
ADVICE_KEY_PREFIX = "advice_"
