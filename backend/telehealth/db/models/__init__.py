from .user import UserModel
from .patient import PatientModel
from .doctor import DoctorModel
from .consultation import ConsultationModel
from .message import MessageModel

__all__ = [
    "UserModel",
    "PatientModel",
    "DoctorModel",
    "ConsultationModel",
    "MessageModel",
]
