"""Application settings and validation."""

import os
from pathlib import Path

BASE = Path(__file__).resolve().parent.parent


class Settings:
    ENV: str
    JWT_SECRET: str
    JWT_ALGORITHM: str
    JWT_EXPIRE_HOURS: int
    DATABASE_URL: str
    MAX_UPLOAD_BYTES: int
    ALLOW_INSECURE_JWT: bool
    ALLOW_DEV_CORS: bool
    TIMEZONE: str
    TIMETABLE_WEEKS: int
    SEARCH_LIMIT: int
    SEARCH_DEBOUNCE_MS: int
    SEARCH_RATE_LIMIT_PER_MIN: int
    LOGIN_RATE_LIMIT_PER_MIN: int
    INITIAL_CREDITS: int
    QUESTIONNAIRE_COST: int
    ADMIN_EMAIL: str
    ADMIN_PASSWORD: str
    SMTP_HOST: str
    SMTP_PORT: int
    SMTP_USER: str
    SMTP_PASSWORD: str
    MAIL_FROM: str

    def __init__(self):
        self.ENV = os.getenv("ENV", "dev").lower()
        self.JWT_SECRET = os.getenv("JWT_SECRET", "change_me_for_prod")
        self.JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
        self.JWT_EXPIRE_HOURS = int(os.getenv("JWT_EXPIRE_HOURS", "24"))
        self.DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{BASE / 'efs.db'}")
        self.MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))  # 10 MB default
        self.ALLOW_INSECURE_JWT = os.getenv("ALLOW_INSECURE_JWT", "false").lower() == "true"
        self.ALLOW_DEV_CORS = os.getenv("ALLOW_DEV_CORS", "true").lower() == "true"
        self.TIMEZONE = os.getenv("TIMEZONE", "Asia/Hong_Kong")
        self.TIMETABLE_WEEKS = int(os.getenv("TIMETABLE_WEEKS", "2"))
        self.SEARCH_LIMIT = int(os.getenv("SEARCH_LIMIT", "20"))
        self.SEARCH_DEBOUNCE_MS = int(os.getenv("SEARCH_DEBOUNCE_MS", "500"))
        self.SEARCH_RATE_LIMIT_PER_MIN = int(os.getenv("SEARCH_RATE_LIMIT_PER_MIN", "120"))
        self.LOGIN_RATE_LIMIT_PER_MIN = int(os.getenv("LOGIN_RATE_LIMIT_PER_MIN", "20"))
        self.INITIAL_CREDITS = int(os.getenv("INITIAL_CREDITS", "3"))
        self.QUESTIONNAIRE_COST = int(os.getenv("QUESTIONNAIRE_COST", "1"))
        self.ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "").strip().lower()
        self.ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "")
        self.SMTP_HOST = os.getenv("SMTP_HOST", "")
        self.SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
        self.SMTP_USER = os.getenv("SMTP_USER", "")
        self.SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
        self.MAIL_FROM = os.getenv("MAIL_FROM", self.SMTP_USER or "noreply@efs.local")
        self._validate()

    def _validate(self):
        if self.ENV != "dev" and not self.ALLOW_INSECURE_JWT and self.JWT_SECRET == "change_me_for_prod":
            raise RuntimeError("JWT_SECRET must be set to a non-default value in non-dev environments")
        if self.TIMETABLE_WEEKS < 0:
            raise RuntimeError("TIMETABLE_WEEKS must be >= 0")
        if self.INITIAL_CREDITS < 0 or self.QUESTIONNAIRE_COST < 0:
            raise RuntimeError("credit settings must be >= 0")


settings = Settings()
