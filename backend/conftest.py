"""
Pytest configuration file for backend testing.
"""
import os
import sys
from pathlib import Path

# Add the backend directory to Python path so imports work correctly
backend_dir = Path(__file__).parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

# Tests never touch the configured database
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("PAYSLIP_NOTIFICATION_WEBHOOK_URL", "")

# Import all models to register them with SQLAlchemy
from modules.payroll import models  # noqa: E402,F401
