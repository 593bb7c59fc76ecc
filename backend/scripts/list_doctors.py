import asyncio
import sys
from pathlib import Path

# Add the parent directory to sys.path to allow importing from telehealth
backend_dir = Path(__file__).parent.parent
sys.path.append(str(backend_dir))

from telehealth.db.base import get_engine, get_session_factory
from telehealth.db.crud.user import list_doctors
from telehealth.config.settings import settings

async def main() -> None:
    print("Connecting to database at:", settings.database_url)
    engine = await get_engine(str(settings.database_url))
    async_session = await get_session_factory(engine)

    async with async_session() as db:
        doctors = await list_doctors(db, limit=500)

        if not doctors:
            print("No doctors found in the database.")
        else:
            print(f"Found {len(doctors)} doctors in the database:")
            print("-" * 80)
            print(f"{'ID':<5} {'Name':<25} {'Specialization':<25} {'Years':<6}")
            print("-" * 80)

            for doctor in doctors:
                years = doctor.experience_years if doctor.experience_years is not None else "-"
                print(f"{doctor.user_id:<5} {doctor.name:<25} {doctor.specialization:<25} {years:<6}")

    await engine.dispose()

if __name__ == "__main__":
    asyncio.run(main())
