# dispatch_elig/config.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Literal


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    app_env: Literal["dev", "staging", "prod"] = "dev"
    log_level: str = "INFO"
    log_json: bool = False

    # Database
    database_url: str | None = None
    pghost: str = "localhost"
    pgport: int = 5432
    pguser: str = "postgres"
    pgpassword: str = ""
    pgdatabase: str = "postgres"
    pg_pool_min: int = 2
    pg_pool_max: int = 20
    pg_command_timeout: int = 60
    pg_statement_timeout_ms: int = 30000
    pg_acquire_timeout: float = 10.0  # Seconds to wait for a free pooled connection

    # Eligible workers query
    elig_default_limit: int = 100
    elig_max_limit: int = 500
    elig_sql_debug_component: str = "dispatch.eligsql"  # Gates the SQL explain endpoint

    # Startup
    elig_backfill_on_startup: bool = True  # Populate fact table from source rows at boot

    @property
    def is_production(self) -> bool:
        return self.app_env == "prod"

    @property
    def database_dsn(self) -> str:
        if self.database_url:
            return self.database_url

        return (
            f"postgresql://{self.pguser}:{self.pgpassword}"
            f"@{self.pghost}:{self.pgport}/{self.pgdatabase}"
        )

    def validate_required_for_production(self) -> list[str]:
        """Validate that required settings exist for production"""
        if not self.is_production:
            return []

        missing = []
        if not self.database_url:
            missing.append("database_url")
        return missing


def warn_on_risky_config(s: "Settings") -> list[str]:
    warnings: list[str] = []

    if s.elig_default_limit > s.elig_max_limit:
        warnings.append(
            f"elig_default_limit={s.elig_default_limit} exceeds elig_max_limit={s.elig_max_limit}."
        )

    if s.pg_pool_min > s.pg_pool_max:
        warnings.append("pg_pool_min is greater than pg_pool_max.")

    if s.pg_acquire_timeout <= 0:
        warnings.append("pg_acquire_timeout<=0: pool exhaustion will block callers indefinitely.")

    if s.is_production and not s.log_json:
        warnings.append("prod: log_json=False (structured logs are expected in production).")

    if not s.elig_backfill_on_startup:
        warnings.append(
            "elig_backfill_on_startup=False: facts for pre-existing source rows "
            "will be missing until each worker is recomputed."
        )

    return warnings


def validate_or_warn(s: "Settings") -> None:
    """
    In prod: enforce required settings (hard fail).
    In non-prod: warn only.
    """
    missing = s.validate_required_for_production()

    if missing:
        raise RuntimeError(f"Missing required settings for production: {', '.join(missing)}")

    for msg in warn_on_risky_config(s):
        print(f"[WARN][config] {msg}")

settings = Settings()
validate_or_warn(settings)
