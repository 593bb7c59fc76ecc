# telehealth/db/models/doctor.py
from sqlalchemy import Column, Integer, String, ForeignKey, Date
from sqlalchemy.orm import relationship
from telehealth.db.base import Base

class DoctorModel(Base):
    __tablename__ = "doctor_profiles"

    user_id          = Column(Integer,
                              ForeignKey("users.id", ondelete="CASCADE"),
                              primary_key=True)

    name             = Column(String(100), nullable=False)
    date_of_birth    = Column(Date,        nullable=False)
    sex              = Column(String(10),  nullable=False)
    specialization   = Column(String(100), nullable=False)
    license_number   = Column(String(50))
    experience_years = Column(Integer)

    user = relationship("UserModel", back_populates="doctor_profile")
