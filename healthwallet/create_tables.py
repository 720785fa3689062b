# healthwallet/create_tables.py
import sys
from pathlib import Path

from dotenv import load_dotenv

# Allow running from the healthwallet/ directory without PYTHONPATH tweaks
ROOT_DIR = Path(__file__).resolve().parent.parent
if str(ROOT_DIR) not in sys.path:
    sys.path.append(str(ROOT_DIR))

ENV_PATH = ROOT_DIR / "healthwallet" / ".env"
if ENV_PATH.exists():
    load_dotenv(ENV_PATH, override=True)

from healthwallet.models import init_db  # noqa: E402

if __name__ == "__main__":
    print("Creating users, user_profile and health_records tables...")
    init_db()
    print("Tables created.")
