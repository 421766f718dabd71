import os

class Settings:
    DB_HOST: str = os.getenv("DB_HOST", "localhost")
    DB_PORT: int = int(os.getenv("DB_PORT", "3306"))
    DB_NAME: str = os.getenv("DB_NAME", "fabtrack")
    DB_USER: str = os.getenv("DB_USER", "app")
    DB_PASS: str = os.getenv("DB_PASS", "app123")
    # full SQLAlchemy URL; wins over the DB_* parts (tests use sqlite)
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")
    TZ: str = os.getenv("TZ", "Asia/Kolkata")
    API_TOKEN: str = os.getenv("API_TOKEN", "")

    UPLOAD_DIR: str = os.getenv("UPLOAD_DIR", "/data/uploads/screenshots")
    MAX_UPLOAD_MB: int = int(os.getenv("MAX_UPLOAD_MB", "10"))

    OCR_LANG: str = os.getenv("OCR_LANG", "eng")
    OCR_TIMEOUT_SEC: float = float(os.getenv("OCR_TIMEOUT_SEC", "30"))
    MANUAL_REVIEW_THRESHOLD: float = float(os.getenv("MANUAL_REVIEW_THRESHOLD", "50"))
    EXTRACTION_WORKERS: int = int(os.getenv("EXTRACTION_WORKERS", "2"))
    EXTRACTION_MAX_PENDING: int = int(os.getenv("EXTRACTION_MAX_PENDING", "20"))

    RESYNC_HOUR: int = int(os.getenv("RESYNC_HOUR", "23"))
    RESYNC_MINUTE: int = int(os.getenv("RESYNC_MINUTE", "0"))

    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_FORMAT: str = os.getenv("LOG_FORMAT", "json")

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return f"mysql+pymysql://{self.DB_USER}:{self.DB_PASS}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}?charset=utf8mb4"

settings = Settings()
