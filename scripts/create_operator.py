import getpass
import os

from backoffice.application.services.admin_auth_service import AdminAuthService
from backoffice.core.config import Settings
from backoffice.infrastructure.persistence.sqlite import SQLitePersistence


def main() -> None:
    settings = Settings()

    email = os.getenv("ADMIN_EMAIL") or input("Operator e-mail: ").strip()
    password = os.getenv("ADMIN_PASSWORD") or getpass.getpass("Operator password: ").strip()
    if not email or len(password) < 8:
        raise RuntimeError("An e-mail and a password of at least 8 characters are required.")

    persistence = SQLitePersistence(settings.database_path)
    try:
        auth = AdminAuthService(persistence, settings.admin_token_secret, settings.admin_token_exp_minutes)
        existing = persistence.get_user_by_email(email.lower())
        user = auth.ensure_default_admin(email, password)
    finally:
        persistence.close()

    if existing:
        print("Operator already exists:", user.email)
    else:
        print("Operator created:", user.email, "in", settings.database_path)


if __name__ == "__main__":
    main()
