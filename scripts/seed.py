# scripts/seed.py

import os
import sys
import argparse
from datetime import datetime, timezone

from dotenv import load_dotenv
from sqlmodel import Session, select

# Ensure root path for relative imports
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.database import create_db_and_tables, engine
from core.security import hash_password
from models.models import MailItem, MemberRole, Organization, OrganizationMember, Recipient, User
from services.trial_service import initialize_trial
from services.usage_service import increment_package_usage

# ✅ Load environment variables
load_dotenv()


def _get_or_create_user(session: Session, email: str, full_name: str, password: str) -> User:
    user = session.exec(select(User).where(User.email == email)).first()
    if not user:
        user = User(full_name=full_name, email=email, password_hash=hash_password(password))
        session.add(user)
        session.commit()
        session.refresh(user)
        print(f"✅ Added user {email}")
    return user


def _get_or_create_org(session: Session, name: str, admin: User) -> Organization:
    org = session.exec(select(Organization).where(Organization.name == name)).first()
    if org:
        return org

    org = Organization(name=name, contact_email=admin.email, billing_email=admin.email)
    session.add(org)
    session.commit()
    session.refresh(org)
    session.add(OrganizationMember(organization_id=org.id, user_id=admin.id, role=MemberRole.ADMIN))
    session.commit()
    initialize_trial(session, org.id)
    print(f"✅ Created {name} (trial started)")
    return org


def seed_dev_data():
    """Seed development database with a demo mailroom on trial."""
    print("🌱 Seeding development data...")
    create_db_and_tables()

    with Session(engine) as session:
        admin = _get_or_create_user(session, "admin@demo.com", "Admin User", "admin1234")
        org = _get_or_create_org(session, "Demo Mailroom", admin)

        # -----------------------------
        # 👥 Member Users
        # -----------------------------
        for email in ["member1@demo.com", "member2@demo.com"]:
            member = _get_or_create_user(session, email, email.split("@")[0].capitalize(), "member123")
            exists = session.exec(
                select(OrganizationMember).where(
                    OrganizationMember.organization_id == org.id,
                    OrganizationMember.user_id == member.id,
                )
            ).first()
            if not exists:
                session.add(OrganizationMember(organization_id=org.id, user_id=member.id))
        session.commit()

        # -----------------------------
        # 📦 Recipients and packages
        # -----------------------------
        if not session.exec(select(Recipient).where(Recipient.organization_id == org.id)).first():
            recipient = Recipient(organization_id=org.id, first_name="Jamie", last_name="Rivera", unit="4B")
            session.add(recipient)
            session.commit()
            session.refresh(recipient)

            for carrier, tracking in [("UPS", "1Z999AA10123456784"), ("USPS", "9400111899223856928499")]:
                session.add(MailItem(
                    organization_id=org.id,
                    recipient_id=recipient.id,
                    created_by_id=admin.id,
                    carrier=carrier,
                    tracking_number=tracking,
                    created_at=datetime.now(timezone.utc),
                ))
                session.commit()
                increment_package_usage(session, org.id)
            print("✅ Added sample recipient and packages")

    print("🌱 Development data seeding complete.")


def seed_staging_data():
    """Seed staging database with minimal safe data."""
    print("🌱 Seeding staging data...")
    create_db_and_tables()

    with Session(engine) as session:
        admin = _get_or_create_user(session, "staging-admin@sortify.app", "Staging Admin", "staging123")
        _get_or_create_org(session, "Staging Mailroom", admin)

    print("🌱 Staging data seeding complete.")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed the Sortify database.")
    parser.add_argument(
        "--env",
        choices=["dev", "staging"],
        default="dev",
        help="Select environment to seed (dev or staging)",
    )
    args = parser.parse_args()

    if args.env == "dev":
        seed_dev_data()
    elif args.env == "staging":
        seed_staging_data()
