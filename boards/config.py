import os
from dotenv import load_dotenv

load_dotenv()

class Config:
    """Board configuration settings"""
    
    # Database settings
    DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///boards.db')
    
    # Runtime settings
    DEBUG = os.getenv('DEBUG', 'False').lower() == 'true'
    LOG_DIR = os.getenv('LOG_DIR', 'logs')
    
    # Preview cache settings
    CACHE_BACKEND = os.getenv('CACHE_BACKEND', 'file')  # "file" or "redis"
    CACHE_DIR = os.getenv('CACHE_DIR', 'cache')
    CACHE_ADOPT_PERSISTED = os.getenv('CACHE_ADOPT_PERSISTED', 'False').lower() == 'true'
    REDIS_URL = os.getenv('REDIS_URL')
    
    # Ranking settings
    PREVIEW_SIZE = int(os.getenv('PREVIEW_SIZE', 7))
    PREVIEW_FETCH_LIMIT = int(os.getenv('PREVIEW_FETCH_LIMIT', 40))  # Raw rows fetched per map before dedup
    PAGE_SIZE = int(os.getenv('PAGE_SIZE', 500))  # Ranked rows shown on a map page
    DEFAULT_GAME_ID = int(os.getenv('DEFAULT_GAME_ID', 1))
    
    @classmethod
    def get_cache_dir(cls) -> str:
        """Get the directory used by the file cache backend"""
        return os.path.abspath(cls.CACHE_DIR)
    
    @classmethod
    def validate(cls):
        """Validate that configuration values are usable"""
        if cls.CACHE_BACKEND not in ('file', 'redis'):
            raise ValueError("CACHE_BACKEND must be 'file' or 'redis'")
        if cls.CACHE_BACKEND == 'redis' and not cls.REDIS_URL and not cls.DEBUG:
            raise ValueError("REDIS_URL is required when CACHE_BACKEND is 'redis'")
        if cls.PREVIEW_SIZE < 1:
            raise ValueError("PREVIEW_SIZE must be a positive integer")
        if cls.PREVIEW_FETCH_LIMIT < cls.PREVIEW_SIZE:
            raise ValueError("PREVIEW_FETCH_LIMIT must be at least PREVIEW_SIZE")
        if cls.PAGE_SIZE < 1:
            raise ValueError("PAGE_SIZE must be a positive integer")
