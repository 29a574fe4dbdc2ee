import sys
from pathlib import Path
import os

from werkzeug.security import generate_password_hash
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from contextlib import contextmanager

# Ensure repo root is on sys.path when running as a script.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.crm.constants import ROLE_ADMIN
from app.crm.models import User


@contextmanager
def _session_scope(database_url: str):
    engine = create_engine(database_url, future=True)
    sm = sessionmaker(bind=engine, class_=Session, autoflush=False, autocommit=False, expire_on_commit=False, future=True)
    s: Session = sm()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed the first admin user in an idempotent way.
    Does NOT overwrite an existing user's password; only promotes it to admin.
    """
    admin_username = (os.environ.get("ADMIN_USERNAME") or "admin").strip()
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@example.com").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///crm.db").strip()

    # Direct engine/session so this can run in release without importing app.wsgi.
    with _session_scope(db_url) as s:
        user = s.query(User).filter(User.email == admin_email).one_or_none()
        if user is None:
            user = s.query(User).filter(User.username == admin_username).one_or_none()
        if user is None:
            user = User(
                username=admin_username,
                email=admin_email,
                password_hash=generate_password_hash(admin_password),
                role=ROLE_ADMIN,
            )
            s.add(user)
        elif user.role != ROLE_ADMIN:
            user.role = ROLE_ADMIN

    print("Initialized database (seed_only).")
    print(f"Admin: {admin_username} <{admin_email}>")
    print("Admin password: (from ADMIN_PASSWORD)")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
