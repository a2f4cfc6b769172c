#!/usr/bin/env python3
"""
Create (or promote) the platform super admin.

Only meant for bootstrapping an empty deployment; every later account is
provisioned through the API.

Usage:
    python create_super_admin.py <email> <password> [display_name]

Example:
    python create_super_admin.py admin@example.com 's3cret!pass' "Platform Admin"
"""

import asyncio
import sys

from salonops import identity
from salonops.core.db import AsyncSessionLocal, engine
from salonops.models import User, UserRole


async def create_super_admin(email: str, password: str, display_name: str) -> bool:
    email = email.strip().lower()
    if len(password) < identity.MIN_PASSWORD_LENGTH:
        print(f"❌ Password must be at least {identity.MIN_PASSWORD_LENGTH} characters")
        return False

    uid = identity.get_uid_by_email(email)
    if uid:
        print(f"✅ Found existing auth user: {uid}")
    else:
        uid = identity.create_owner_user(email, password, display_name)
        print(f"✅ Created auth user: {uid}")

    async with AsyncSessionLocal() as session:
        async with session.begin():
            existing = await session.get(User, uid)

            if existing and existing.role == UserRole.SUPER_ADMIN.value:
                print(f"⚠️  {email} is already a super admin")
                return True

            if existing:
                print(f"🔧 Promoting {uid} from {existing.role} to super_admin...")
                existing.role = UserRole.SUPER_ADMIN.value
                existing.owner_uid = None
                existing.branch_id = None
            else:
                session.add(
                    User(uid=uid, email=email, name=display_name, role=UserRole.SUPER_ADMIN.value)
                )

    await engine.dispose()
    print(f"✅ {email} is now a super admin")
    return True


async def main():
    if len(sys.argv) not in (3, 4):
        print(__doc__)
        sys.exit(1)

    email, password = sys.argv[1], sys.argv[2]
    display_name = sys.argv[3] if len(sys.argv) == 4 else "Super Admin"

    success = await create_super_admin(email, password, display_name)
    if not success:
        print("\n❌ Failed to create super admin.")
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
