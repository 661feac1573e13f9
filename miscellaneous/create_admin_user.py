#!/usr/bin/env python3
"""
Script to create or promote an admin user for the Community Events API.
"""

import asyncio
import os
import sys
from getpass import getpass

# Add the project root to the Python path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import select

from community_events.database import init_database, close_database, get_db_session
from community_events.models.user import User, UserRole
from community_events.schemas.auth import UserRegistration
from community_events.services.user_service import UserService
from community_events.utils.exceptions import CommunityEventsError


async def create_admin_user():
    """Create an admin user interactively."""
    print("🔧 Community Events - Admin User Creation")
    print("=" * 50)

    email = input("Enter admin email: ").strip().lower()
    if not email:
        print("❌ Email is required!")
        return

    display_name = input("Enter display name: ").strip()
    if not display_name:
        print("❌ Display name is required!")
        return

    password = getpass("Enter password: ").strip()
    if len(password) < 8:
        print("❌ Password must be at least 8 characters!")
        return

    confirm_password = getpass("Confirm password: ").strip()
    if password != confirm_password:
        print("❌ Passwords do not match!")
        return

    print("\n🔄 Initializing database connection...")
    await init_database()

    try:
        async with get_db_session() as db:
            user_service = UserService(db)
            existing_user = await user_service.get_user_by_email(email)

            if existing_user:
                print(f"❌ User with email {email} already exists!")
                make_admin = input("Make existing user an admin? (y/N): ").strip().lower()
                if make_admin == "y":
                    await user_service.set_role(existing_user.id, UserRole.ADMIN)
                    print(f"✅ User {email} is now an admin!")
                return

            print("🔄 Creating admin user...")
            admin_user = await user_service.create_user(
                UserRegistration(email=email, password=password, display_name=display_name),
                role=UserRole.ADMIN,
            )

            print("✅ Admin user created successfully!")
            print(f"   Email: {admin_user.email}")
            print(f"   Name: {admin_user.display_name}")
            print(f"   Role: {admin_user.role.value}")
            print(f"   ID: {admin_user.id}")
    except CommunityEventsError as e:
        print(f"❌ Error creating admin user: {e.message}")
    finally:
        await close_database()


async def list_admin_users():
    """List all admin users."""
    print("👥 Current Admin Users")
    print("=" * 30)

    await init_database()

    try:
        async with get_db_session() as db:
            result = await db.execute(
                select(User).where(User.role == UserRole.ADMIN).order_by(User.email)
            )
            admin_users = result.scalars().all()

            if not admin_users:
                print("No admin users found.")
            for user in admin_users:
                status = "Active" if user.is_active else "Inactive"
                print(f"📧 {user.email}")
                print(f"   Name: {user.display_name}")
                print(f"   Status: {status}")
                print(f"   ID: {user.id}")
                print()
    finally:
        await close_database()


async def main():
    if len(sys.argv) > 1 and sys.argv[1] == "list":
        await list_admin_users()
    else:
        await create_admin_user()


if __name__ == "__main__":
    print("Usage:")
    print("  python miscellaneous/create_admin_user.py        # Create new admin user")
    print("  python miscellaneous/create_admin_user.py list   # List existing admin users")
    print()

    asyncio.run(main())
