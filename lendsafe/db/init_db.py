import asyncio
import uuid

from sqlalchemy import select

from lendsafe.core.roles import RoleType
from lendsafe.core.security import get_password_hash
from lendsafe.core.settings import settings
from lendsafe.db.session import AsyncSessionLocal
from lendsafe.models.role_assignment import RoleAssignment
from lendsafe.models.user_profile import UserProfile


async def init_db() -> None:
    """
    Seed the platform administrator (SAAS_ADMIN) if it does not exist yet.
    """
    email = settings.seed_admin_email.strip().lower()
    async with AsyncSessionLocal() as session:
        print("Seeding database...")
        result = await session.execute(select(UserProfile).where(UserProfile.email == email))
        user = result.scalar_one_or_none()
        if user:
            print("Platform admin already exists.")
            return

        print("Creating platform admin...")
        user = UserProfile(
            id=uuid.uuid4(),
            auth_id=f"local:{uuid.uuid4()}",
            email=email,
            first_name=settings.seed_admin_first_name,
            last_name=settings.seed_admin_last_name,
            hashed_password=get_password_hash(settings.seed_admin_password),
            must_change_password=True,
            is_active=True,
        )
        session.add(user)
        session.add(RoleAssignment(id=uuid.uuid4(), user_id=user.id, role=RoleType.SAAS_ADMIN.value, bank_id=None))
        await session.commit()
        print("Platform admin created.")


if __name__ == "__main__":
    asyncio.run(init_db())
