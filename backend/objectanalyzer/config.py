from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    DATABASE_URL: str = "sqlite:///data/threatintel.sqlite"
    RISK_SCORING_CONFIG: str = "config/risk_scoring.yaml"
    LOG_LEVEL: str = "INFO"
    DEBUG: bool = False
    # Shared secret presented by callers (if unset, all requests pass; local dev only)
    API_KEY: str | None = None
    API_KEY_MIN_LENGTH: int = 16
    # API server
    HOST: str = "localhost"
    PORT: int = 9000
    MAX_UPLOAD_SIZE_MB: int = 10
    UPLOAD_RATE_LIMIT: str = "30/minute"
    # Batch bounds per pipeline invocation
    PENDING_IMPORT_BATCH_LIMIT: int = 10000
    RISK_SCORE_BATCH_LIMIT: int = 10000
    # CSV drop directories for the worker
    IMPORT_CSV_DIR: str = "importCSV"
    TRUSTED_CSV_DIR: str = "trustedCSV"
    ARCHIVE_CSV_DIR: str = "archiveCSV"
    # Reporting
    REPORT_LIMIT: int = 100
    # SQLite busy timeout (seconds) for cross-process writers
    SQLITE_BUSY_TIMEOUT: int = 30


settings = Settings()
