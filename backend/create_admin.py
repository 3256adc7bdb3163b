import asyncio
import getpass
from sqlalchemy import select

from pesantren.db.database import AsyncSessionLocal, create_tables
from pesantren.db.models.user import User
from pesantren.core.roles import Role
from pesantren.core.security import get_password_hash

# Staff accounts cannot self-register; create them here
STAFF_ROLES = (Role.ADMIN, Role.USTAD)

async def create_staff_user():
    email = input("Email: ").strip().lower()
    name = input("Name: ").strip() or "Admin"
    role_raw = input("Role [admin/ustad] (default admin): ").strip().lower() or Role.ADMIN.value
    password = getpass.getpass("Password: ")

    try:
        role = Role(role_raw)
    except ValueError:
        print(f"Unknown role '{role_raw}'")
        return
    if role not in STAFF_ROLES:
        print(f"Role must be one of: {', '.join(r.value for r in STAFF_ROLES)}")
        return

    await create_tables()
    async with AsyncSessionLocal() as session:
        stmt = select(User).where(User.email == email)
        existing = await session.execute(stmt)
        if existing.scalar_one_or_none():
            print(f"User {email} already exists!")
            return

        print(f"Creating {role.value} account...")
        session.add(User(
            email=email,
            name=name,
            password=get_password_hash(password),
            role=role,
            is_active=True,
        ))
        await session.commit()
        print(f"User '{email}' ({role.value}) created successfully!")

if __name__ == "__main__":
    asyncio.run(create_staff_user())
