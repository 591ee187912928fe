# Core module
from msvault.core.config import get_settings, Settings
from msvault.core.database import get_db, get_db_context, Base

__all__ = ["get_settings", "Settings", "get_db", "get_db_context", "Base"]
