# telehealth/db/models/patient.py
from sqlalchemy import Column, Integer, String, Date, ForeignKey
from sqlalchemy.orm import relationship
from telehealth.db.base import Base

class PatientModel(Base):
    __tablename__ = "patient_profiles"

    user_id       = Column(Integer,
                           ForeignKey("users.id", ondelete="CASCADE"),
                           primary_key=True)

    name          = Column(String(100), nullable=False)
    date_of_birth = Column(Date,        nullable=False)
    sex           = Column(String(10),  nullable=False)  # male / female / other

    user = relationship("UserModel", back_populates="patient_profile")
