from pydantic_settings import BaseSettings
from typing import List, Optional

class Settings(BaseSettings):
    # ---------- MySQL ----------
    DB_HOST: str = "localhost"
    DB_PORT: int = 3306
    DB_USER: str = "collabnotes"
    DB_PASSWORD: str = ""
    DB_DATABASE: str = "collabnotes"

    # Full SQLAlchemy URL, overrides the MySQL fields above (sqlite in tests)
    DATABASE_URL: Optional[str] = None

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000"

    @property
    def DATABASE_URI(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"mysql+pymysql://{self.DB_USER}:{self.DB_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_DATABASE}?charset=utf8mb4"
        )

    @property
    def CORS_ORIGINS_LIST(self) -> List[str]:
        return [orig.strip() for orig in self.CORS_ORIGINS.split(",") if orig.strip()]

    # ---------- JWT ----------
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # ---------- Messaging ----------
    UPLOAD_DIR: str = "uploads"
    MAX_ATTACHMENTS: int = 5
    MAX_MESSAGE_LENGTH: int = 2000
    EDIT_WINDOW_HOURS: int = 24

    # ---------- Realtime ----------
    TYPING_EXPIRY_SECONDS: int = 6
    TYPING_SWEEP_SECONDS: int = 2

    # ---------- Cleanup ----------
    UPLOAD_KEEP_DAYS: int = 7

    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = True

settings = Settings()
