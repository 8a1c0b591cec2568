"""Bootstrap for the todo app's PostgreSQL database."""
from pathlib import Path

__version__ = "0.1.0"

SQL_DIR = Path(__file__).parent
