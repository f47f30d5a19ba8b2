import os


class Settings:
    PROJECT_NAME: str = "quizbank"
    DEBUG: bool = os.environ.get("DEBUG", "").lower() in ("1", "true", "yes")
    LOG_DIR: str = os.environ.get("LOG_DIR", "log")
    LOG_FILE: str = "quizbank.log"
    DB_DIR: str = os.environ.get("DB_DIR", "db")
    DB_FILE: str = "quizbank.db"
    # Empty string disables the remote progress mirror
    REDIS_URL: str = os.environ.get("REDIS_URL", "")
    SHEET_CSV_URL: str = os.environ.get("SHEET_CSV_URL", "")
    SNAPSHOT_FILE: str = os.environ.get("SNAPSHOT_FILE", "data.json")
    CACHE_TTL_SECONDS: int = int(os.environ.get("CACHE_TTL_SECONDS", 300))
    FETCH_TIMEOUT_SECONDS: int = 10
    SET_SIZE: int = 50
    SHUFFLE_SIZE: int = 50
    SHUFFLE_TAG: str = os.environ.get("SHUFFLE_TAG", "haryanamo")
    PRACTICE_TAG: str = os.environ.get("PRACTICE_TAG", "practiseset")
    TEST_DURATION_SECONDS: int = int(os.environ.get("TEST_DURATION_SECONDS", 3600))
    SESSION_COOKIE_NAME: str = "quiz_session_id"
    SESSION_TIMEOUT_MINUTES: int = 120
    PROGRESS_TTL_DAYS: int = 30
    ROOT_PATH: str = os.environ.get("ROOT_PATH", "")


settings = Settings()
