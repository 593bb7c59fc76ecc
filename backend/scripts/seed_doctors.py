import asyncio
import sys
from pathlib import Path
from datetime import datetime

# Add the parent directory to sys.path to allow importing from telehealth
backend_dir = Path(__file__).parent.parent
sys.path.append(str(backend_dir))

from sqlalchemy import select
from telehealth.db.base import get_engine, get_session_factory
from telehealth.db.models.user import UserModel
from telehealth.db.models.doctor import DoctorModel
from telehealth.core.auth import get_password_hash
from telehealth.config.settings import settings

# email, name, specialization, sex, date of birth, license number, years of experience
DOCTORS = [
    ("dr.smith@example.com", "John Smith", "Cardiology", "male", "1975-05-15", "LIC-100231", 22),
    ("dr.johnson@example.com", "Alice Johnson", "Cardiology", "female", "1980-07-20", "LIC-100874", 16),
    ("dr.house@example.com", "Gregory House", "Diagnostic Medicine", "male", "1965-06-11", "LIC-099012", 30),
    ("dr.chen@example.com", "Mei Chen", "Neurology", "female", "1985-03-25", "LIC-104455", 12),
    ("dr.brown@example.com", "Sarah Brown", "Pediatrics", "female", "1978-12-05", "LIC-101902", 19),
    ("dr.jones@example.com", "Michael Jones", "Orthopedics", "male", "1982-11-15", "LIC-102366", 14),
    ("dr.taylor@example.com", "Emily Taylor", "Dermatology", "female", "1992-01-30", "LIC-107781", 6),
    ("dr.allen@example.com", "Olivia Allen", "Psychiatry", "female", "1986-06-06", "LIC-105120", 11),
    ("dr.young@example.com", "Christopher Young", "Endocrinology", "male", "1981-03-03", "LIC-102008", 15),
    ("dr.baker@example.com", "Sophia Baker", "Pulmonology", "female", "1987-08-08", "LIC-105933", 9),
]

async def main() -> None:
    print("Connecting to database at:", settings.database_url)
    engine = await get_engine(str(settings.database_url))
    async_session = await get_session_factory(engine)

    async with async_session() as db:
        for email, name, specialization, sex, dob, license_number, years in DOCTORS:
            dob_date = datetime.strptime(dob, "%Y-%m-%d").date()

            # Check if doctor already exists to avoid duplicates
            existing_user = await db.execute(
                select(UserModel).where(UserModel.email == email)
            )
            if existing_user.first() is not None:
                print(f"Doctor with email {email} already exists. Skipping.")
                continue

            pwd_hash = get_password_hash("TestPassword1!")
            user = UserModel(
                email=email,
                password_hash=pwd_hash,
                name=name,
                role="doctor",
                onboarded=True,
            )
            user.doctor_profile = DoctorModel(
                name=name,
                date_of_birth=dob_date,
                sex=sex,
                specialization=specialization,
                license_number=license_number,
                experience_years=years,
            )
            db.add(user)
            print(f"Added doctor: {name} ({email}), specialization: {specialization}")

        await db.commit()
        print("Doctors successfully added to the database.")

    await engine.dispose()

if __name__ == "__main__":
    asyncio.run(main())
