import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str
    log_level: str
    api_version: str

    mongo_url: str
    mongo_db_name: str

    jwt_secret: str
    jwt_algorithm: str
    access_token_ttl_seconds: int
    refresh_token_ttl_seconds: int

    storage_backend: str
    storage_local_root: str
    s3_endpoint: str
    s3_region: str
    s3_bucket: str
    s3_access_key_id: str
    s3_secret_access_key: str


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


ACCESS_TOKEN_TTL_DEFAULT = 30 * 24 * 60 * 60  # 30 days


def load_settings() -> Settings:
    access_ttl = _getenv_int("ACCESS_TOKEN_TTL_SECONDS", ACCESS_TOKEN_TTL_DEFAULT)
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///workhub.db"),
        log_level=_getenv("LOG_LEVEL", "INFO").upper(),
        api_version=_getenv("API_VERSION", "v1"),
        mongo_url=_getenv("MONGO_URL", "mongodb://localhost:27017"),
        mongo_db_name=_getenv("MONGO_DB_NAME", "workhub"),
        jwt_secret=_getenv("JWT_SECRET", "change-me"),
        jwt_algorithm=_getenv("JWT_ALGORITHM", "HS256"),
        access_token_ttl_seconds=access_ttl,
        # Refresh tokens outlive access tokens by a factor of three unless overridden.
        refresh_token_ttl_seconds=_getenv_int("REFRESH_TOKEN_TTL_SECONDS", access_ttl * 3),
        storage_backend=_getenv("STORAGE_BACKEND", "local"),
        storage_local_root=_getenv("STORAGE_LOCAL_ROOT", ""),
        s3_endpoint=_getenv("S3_ENDPOINT", ""),
        s3_region=_getenv("S3_REGION", "nyc3"),
        s3_bucket=_getenv("S3_BUCKET", ""),
        s3_access_key_id=_getenv("S3_ACCESS_KEY_ID", ""),
        s3_secret_access_key=_getenv("S3_SECRET_ACCESS_KEY", ""),
    )


def load_config() -> dict:
    s = load_settings()
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "LOG_LEVEL": s.log_level,
        "API_VERSION": s.api_version,
        "API_PREFIX": f"/api/{s.api_version}",
        "MONGO_URL": s.mongo_url,
        "MONGO_DB_NAME": s.mongo_db_name,
        "JWT_SECRET": s.jwt_secret,
        "JWT_ALGORITHM": s.jwt_algorithm,
        "ACCESS_TOKEN_TTL_SECONDS": s.access_token_ttl_seconds,
        "REFRESH_TOKEN_TTL_SECONDS": s.refresh_token_ttl_seconds,
        "STORAGE_BACKEND": s.storage_backend,
        "STORAGE_LOCAL_ROOT": s.storage_local_root,
        "S3_ENDPOINT": s.s3_endpoint,
        "S3_REGION": s.s3_region,
        "S3_BUCKET": s.s3_bucket,
        "S3_ACCESS_KEY_ID": s.s3_access_key_id,
        "S3_SECRET_ACCESS_KEY": s.s3_secret_access_key,
        # attachment uploads are capped at 10MB per file in the tasks module
        "MAX_CONTENT_LENGTH": 25 * 1024 * 1024,
    }
