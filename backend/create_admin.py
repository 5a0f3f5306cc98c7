"""Create an admin account, or promote an existing one and reset its password.

Usage: python create_admin.py --email admin@example.com --name "Admin User"
"""
import argparse
import getpass
from app.core.database import Base, SessionLocal, engine
from app.models import contact_message, media_item  # noqa: F401
from app.services.auth_service import auth_service
from app.services.policy import count_admins


def main():
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--email", required=True)
    parser.add_argument("--name", default="Admin User")
    parser.add_argument("--password", help="Prompted for when omitted")
    args = parser.parse_args()

    password = args.password or getpass.getpass("Password: ")
    if len(password) < 6:
        parser.error("password must be at least 6 characters")

    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        user = auth_service.create_admin(db, args.name, args.email, password)
        print(f"Admin ready: {user.name} <{user.email}> (id {user.id})")
        print(f"Admins in system: {count_admins(db)}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
