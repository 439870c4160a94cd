import re
from functools import lru_cache
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|us|ns|h|m|s)")
_DURATION_UNITS = {
    "h": 3600.0,
    "m": 60.0,
    "s": 1.0,
    "ms": 0.001,
    "us": 0.000001,
    "ns": 0.000000001,
}


def parse_duration(value) -> float:
    """
    時間長の設定値を解析して秒数を返す

    "100ms"・"2s"・"1h30m" 形式の文字列と、秒単位の数値を受け付ける。
    """
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip().lower()
    if not text:
        raise ValueError("empty duration")
    try:
        return float(text)
    except ValueError:
        pass

    total = 0.0
    pos = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            raise ValueError(f"invalid duration: {value!r}")
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos != len(text):
        raise ValueError(f"invalid duration: {value!r}")
    return total


class Settings(BaseSettings):
    PROJECT_NAME: str = "University Exam API"
    VERSION: str = "1.0.0"
    API_PREFIX: str = "/api"
    PORT: int = 8080
    ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    # CORS Configuration
    CORS_ORIGINS: list = ["*"]

    # Database Configuration
    DATABASE_URL: Optional[str] = None
    DB_DRIVER: str = "mysql+pymysql"
    DB_HOST: str = "localhost"
    DB_PORT: int = 3306
    DB_NAME: str = "university_exam"
    DB_USER: str = "root"
    DB_PASSWORD: str = ""
    DB_SSL_MODE: str = "disable"

    # Connection pool
    DB_MAX_IDLE_CONNS: int = 10
    DB_MAX_OPEN_CONNS: int = 100
    DB_CONN_MAX_LIFETIME: float = 3600.0
    DB_CONN_MAX_IDLE_TIME: float = 1800.0

    # Transaction / retry
    TX_TIMEOUT: float = 30.0
    TX_INITIAL_INTERVAL: float = 0.1
    TX_MAX_INTERVAL: float = 2.0
    TX_MULTIPLIER: float = 2.0
    TX_RANDOMIZATION_FACTOR: float = 0.1
    TX_MAX_ELAPSED_TIME: float = 60.0
    TX_READ_ONLY: bool = False
    TX_ISOLATION: str = "READ COMMITTED"
    READ_TIMEOUT: float = 5.0

    # Read cache
    CACHE_TTL: float = 300.0
    CACHE_SEARCH_TTL: float = 60.0
    CACHE_CLEANUP_INTERVAL: float = 600.0

    # Request guard / CSRF
    MAX_BODY_SIZE: int = 1024 * 1024  # 1MiB
    CSRF_ENABLED: bool = True
    CSRF_TOKEN_HEADER: str = "X-CSRF-Token"
    CSRF_TOKEN_LENGTH: int = 32
    CSRF_TOKEN_EXPIRATION: float = 3600.0

    @field_validator(
        "DB_CONN_MAX_LIFETIME",
        "DB_CONN_MAX_IDLE_TIME",
        "TX_TIMEOUT",
        "TX_INITIAL_INTERVAL",
        "TX_MAX_INTERVAL",
        "TX_MAX_ELAPSED_TIME",
        "READ_TIMEOUT",
        "CACHE_TTL",
        "CACHE_SEARCH_TTL",
        "CACHE_CLEANUP_INTERVAL",
        "CSRF_TOKEN_EXPIRATION",
        mode="before",
    )
    @classmethod
    def _parse_duration(cls, value):
        return parse_duration(value)

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        url = f"{self.DB_DRIVER}://{self.DB_USER}:{self.DB_PASSWORD}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        if self.DB_DRIVER.startswith("mysql"):
            url += "?charset=utf8mb4"
        return url

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    class Config:
        env_file = ".env"


@lru_cache()
def get_settings():
    return Settings()
