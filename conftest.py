import os
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).parent

# Set environment variables BEFORE importing app modules to bypass strict checks
os.environ["JWT_SECRET"] = "test-secret-key-for-pytest-only-12345"
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("TICKET_ALLOCATOR", "sequence")
# Each test builds its own database; this one only backs the module-level engine
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{(REPO_ROOT / 'test.db').resolve()}"

# Add the backend directory to sys.path so imports work
BACKEND_PATH = REPO_ROOT / "fastapi-backend"
if str(BACKEND_PATH) not in sys.path:
    sys.path.insert(0, str(BACKEND_PATH))
