import os
from dataclasses import dataclass, field
from typing import List

from dotenv import load_dotenv
from fastapi import Request

load_dotenv()


def _split_origins(value: str) -> List[str]:
    return [origin.strip() for origin in value.split(",") if origin.strip()]


@dataclass(frozen=True)
class Settings:
    app_env: str = "development"
    port: int = 8000
    log_level: str = "INFO"

    database_url: str = "mongodb://localhost:27017"
    database_name: str = "cinetalk"

    jwt_secret: str = "dev_secret_change_me"
    jwt_alg: str = "HS256"
    token_expire_days: int = 30

    tmdb_access_token: str = ""
    tmdb_api_key: str = ""
    tmdb_base_url: str = "https://api.themoviedb.org/3"
    tmdb_image_base: str = "https://image.tmdb.org/t/p/original"
    tmdb_timeout: float = 10.0

    # Inline base64 avatars travel in the JSON body
    max_body_bytes: int = 10 * 1024 * 1024
    max_avatar_mb: float = 8.0

    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            app_env=os.getenv("APP_ENV", "development"),
            port=int(os.getenv("PORT", 8000)),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            database_url=os.getenv("DATABASE_URL", "mongodb://localhost:27017"),
            database_name=os.getenv("DATABASE_NAME", "cinetalk"),
            jwt_secret=os.getenv("JWT_SECRET", "dev_secret_change_me"),
            jwt_alg=os.getenv("JWT_ALG", "HS256"),
            token_expire_days=int(os.getenv("TOKEN_EXPIRE_DAYS", 30)),
            tmdb_access_token=os.getenv("TMDB_ACCESS_TOKEN", ""),
            tmdb_api_key=os.getenv("TMDB_API_KEY", ""),
            tmdb_base_url=os.getenv("TMDB_BASE_URL", "https://api.themoviedb.org/3"),
            tmdb_image_base=os.getenv("TMDB_IMAGE_BASE", "https://image.tmdb.org/t/p/original"),
            tmdb_timeout=float(os.getenv("TMDB_TIMEOUT", 10)),
            max_body_bytes=int(os.getenv("MAX_BODY_BYTES", 10 * 1024 * 1024)),
            max_avatar_mb=float(os.getenv("MAX_AVATAR_MB", 8)),
            cors_origins=_split_origins(os.getenv("CORS_ORIGINS", "*")),
        )


def get_settings(request: Request) -> Settings:
    return request.app.state.settings
