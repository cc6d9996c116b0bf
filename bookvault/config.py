"""Configuration management."""
import os
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


class Config:
    """Application configuration."""
    
    # Storage backend: "file", "memory" or "postgres"
    STORAGE_BACKEND = os.getenv("BOOKVAULT_STORAGE", "file")
    DATA_FILE = os.getenv("BOOKVAULT_DATA_FILE", "bookvault.json")
    
    # Database (postgres backend only)
    DB_HOST = os.getenv("DB_HOST", "localhost")
    DB_PORT = os.getenv("DB_PORT", "5432")
    DB_NAME = os.getenv("DB_NAME", "bookvault")
    DB_USER = os.getenv("DB_USER", "postgres")
    DB_PASSWORD = os.getenv("DB_PASSWORD", "")
    
    @property
    def DATABASE_URL(self):
        """Build PostgreSQL connection string."""
        return f"postgresql://{self.DB_USER}:{self.DB_PASSWORD}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
    
    # Search
    SEARCH_HISTORY_LIMIT = int(os.getenv("BOOKVAULT_SEARCH_HISTORY_LIMIT", "10"))
    
    # Display defaults
    DEFAULT_THEME = os.getenv("BOOKVAULT_DEFAULT_THEME", "notebook")
    DEFAULT_ITEMS_PER_PAGE = int(os.getenv("BOOKVAULT_ITEMS_PER_PAGE", "20"))
    
    LOG_LEVEL = os.getenv("BOOKVAULT_LOG_LEVEL", "INFO")
