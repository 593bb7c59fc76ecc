# telehealth/db/models/consultation.py
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


class ConsultationModel(Base):
    __tablename__ = "consultations"

    id = Column(Integer, primary_key=True)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)
    status = Column(
        String, default="pending", nullable=False
    )  # pending -> active -> inactive
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint(
            "doctor_id IS NULL OR doctor_id <> patient_id",
            name="ck_consultation_not_self",
        ),
        CheckConstraint(
            "status IN ('pending', 'active', 'inactive')",
            name="ck_consultation_status",
        ),
        Index("ix_consultations_doctor_status", "doctor_id", "status"),
        Index("ix_consultations_patient", "patient_id"),
    )

    # Relationships
    patient = relationship(
        "UserModel", foreign_keys=[patient_id], backref="patient_consultations"
    )
    doctor = relationship(
        "UserModel", foreign_keys=[doctor_id], backref="doctor_consultations"
    )
    messages = relationship(
        "MessageModel",
        back_populates="consultation",
        cascade="all, delete-orphan",
        order_by="MessageModel.id",
    )
