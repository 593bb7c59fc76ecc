# telehealth/db/models/message.py
from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from telehealth.db.base import Base, utcnow


class MessageModel(Base):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True)
    consultation_id = Column(
        Integer, ForeignKey("consultations.id", ondelete="CASCADE"), nullable=False
    )
    # NULL sender means the AI assistant wrote it
    sender_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    content = Column(Text, nullable=False)
    message_type = Column(String, default="user", nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "(message_type = 'ai' AND sender_id IS NULL) OR "
            "(message_type = 'user' AND sender_id IS NOT NULL)",
            name="ck_message_sender_matches_type",
        ),
        Index("ix_messages_consultation_created", "consultation_id", "created_at"),
    )

    consultation = relationship("ConsultationModel", back_populates="messages")
    sender = relationship("UserModel", foreign_keys=[sender_id])
