import os
import sys
from pathlib import Path

from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script (Windows-friendly).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.golfpoi.models import User  # noqa: E402
from app.golfpoi.modules.categories.models import Category  # noqa: E402
from app.golfpoi.modules.categories.service import parse_counties  # noqa: E402
from scripts._db_utils import resolve_database_url, script_session  # noqa: E402

PROVINCES = {
    "Connacht": "Galway Leitrim Mayo Roscommon Sligo",
    "Leinster": "Carlow Dublin Kildare Kilkenny Laois Longford Louth Meath Offaly Westmeath Wexford Wicklow",
    "Munster": "Clare Cork Kerry Limerick Tipperary Waterford",
    "Ulster": "Antrim Armagh Cavan Derry Donegal Down Fermanagh Monaghan Tyrone",
}


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed the admin user and the province categories in an idempotent way.
    Does NOT overwrite an existing admin user's password.
    """
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@golfpoi.local").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"

    db_url = resolve_database_url(database_url)

    with script_session(db_url) as s:
        user = s.query(User).filter(User.email == admin_email).one_or_none()
        if not user:
            user = User(
                email=admin_email,
                password_hash=generate_password_hash(admin_password),
                first_name="Site",
                last_name="Admin",
                admin_user=True,
                is_active=True,
            )
            s.add(user)
            s.flush()
        elif not user.admin_user:
            user.admin_user = True

        for province, counties in PROVINCES.items():
            if s.query(Category).filter(Category.province == province).one_or_none():
                continue
            s.add(Category(province=province, valid_counties=parse_counties(counties), last_updated_by_user_id=user.id))

    print("Initialized database (seed_only).")
    print(f"Admin email: {admin_email}")
    print("Admin password: (from ADMIN_PASSWORD)")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
