from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List, Optional


@dataclass(frozen=True)
class Settings:
    """
    Application settings loaded from environment variables.

    Env vars:
    - PERSISTENCE_BACKEND: 'memory' (default), 'sqlite' or 'dynamodb'
    - SQLITE_DB_PATH: path to sqlite db file. Default './data/todos.db'
    - TABLE_NAME: DynamoDB table name. Default 'todos'
    - AWS_REGION: region for boto3 clients (optional)
    - SCHEDULER_BACKEND: 'memory' (default), 'eventbridge' or 'none'
    - QUEUE_ARN: SQS queue ARN targeted by aging schedules (eventbridge only)
    - SCHEDULER_ROLE_ARN: IAM role the scheduler assumes to send to the queue
    - SCHEDULE_GROUP_NAME: optional EventBridge schedule group
    - SCHEDULE_NAME_PREFIX: prefix for aging schedule names. Default 'aged-flag-'
    - AGING_DELAY_SECONDS: delay between creation and aging. Default 60
    - AGING_POLL_INTERVAL_SECONDS: local drain loop interval. Default 5
    - AGING_MAX_ATTEMPTS: local re-drive limit for failed aging tasks. Default 3
    - REPORT_BATCH_FAILURES: 'true' (default) to return SQS partial batch responses
    - REQUIRE_AUTH: 'true' to reject Lambda requests without an identity claim
    - CORS_ALLOW_ORIGINS: comma-separated list of allowed origins; '*' by default
    - ENABLE_BASIC_AUTH: 'true' to enable optional HTTP Basic Auth (default: false)
    - BASIC_AUTH_USERNAME: username for basic auth (required when ENABLE_BASIC_AUTH=true)
    - BASIC_AUTH_PASSWORD: password for basic auth (required when ENABLE_BASIC_AUTH=true)
    - LOG_LEVEL: stdlib level name. Default 'INFO'
    - LOG_FORMAT: 'json' (default) or 'dev'
    """

    persistence_backend: str = "memory"
    sqlite_db_path: str = "./data/todos.db"
    table_name: str = "todos"
    aws_region: Optional[str] = None
    scheduler_backend: str = "memory"
    queue_arn: Optional[str] = None
    scheduler_role_arn: Optional[str] = None
    schedule_group_name: Optional[str] = None
    schedule_name_prefix: str = "aged-flag-"
    aging_delay_seconds: int = 60
    aging_poll_interval_seconds: float = 5.0
    aging_max_attempts: int = 3
    report_batch_failures: bool = True
    require_auth: bool = False
    cors_allow_origins: List[str] = field(default_factory=lambda: ["*"])
    enable_basic_auth: bool = False
    basic_auth_username: Optional[str] = None
    basic_auth_password: Optional[str] = None
    log_level: str = "INFO"
    log_format: str = "json"


def _get_env(name: str, default: str) -> str:
    value = os.getenv(name, default)
    if value is None or value == "":
        return default
    return value


def _get_optional_env(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return None
    return value.strip()


def _parse_bool(value: str, default: bool = False) -> bool:
    v = value.strip().lower()
    if v in {"1", "true", "yes", "on"}:
        return True
    if v in {"0", "false", "no", "off"}:
        return False
    return default


def _parse_int(value: str, default: int) -> int:
    try:
        return int(value.strip())
    except ValueError:
        return default


def _parse_float(value: str, default: float) -> float:
    try:
        return float(value.strip())
    except ValueError:
        return default


def _parse_origins(origins_value: str) -> List[str]:
    """
    Parse CORS origins from env. Supports:
    - '*' to allow all origins
    - Comma-separated list of origins
    """
    value = origins_value.strip()
    if value == "*":
        return ["*"]
    return [o.strip() for o in value.split(",") if o.strip()]


# PUBLIC_INTERFACE
def get_settings() -> Settings:
    """Return application settings loaded from environment variables."""
    backend = _get_env("PERSISTENCE_BACKEND", "memory").strip().lower()
    if backend not in {"memory", "sqlite", "dynamodb"}:
        backend = "memory"

    scheduler_backend = _get_env("SCHEDULER_BACKEND", "memory").strip().lower()
    if scheduler_backend not in {"memory", "eventbridge", "none"}:
        scheduler_backend = "memory"

    log_format = _get_env("LOG_FORMAT", "json").strip().lower()
    if log_format not in {"json", "dev"}:
        log_format = "json"

    enable_basic_auth = _parse_bool(_get_env("ENABLE_BASIC_AUTH", "false"), False)

    return Settings(
        persistence_backend=backend,
        sqlite_db_path=_get_env("SQLITE_DB_PATH", "./data/todos.db").strip(),
        table_name=_get_env("TABLE_NAME", "todos").strip(),
        aws_region=_get_optional_env("AWS_REGION"),
        scheduler_backend=scheduler_backend,
        queue_arn=_get_optional_env("QUEUE_ARN"),
        scheduler_role_arn=_get_optional_env("SCHEDULER_ROLE_ARN"),
        schedule_group_name=_get_optional_env("SCHEDULE_GROUP_NAME"),
        schedule_name_prefix=_get_env("SCHEDULE_NAME_PREFIX", "aged-flag-").strip(),
        aging_delay_seconds=max(_parse_int(_get_env("AGING_DELAY_SECONDS", "60"), 60), 0),
        aging_poll_interval_seconds=max(
            _parse_float(_get_env("AGING_POLL_INTERVAL_SECONDS", "5"), 5.0), 0.1
        ),
        aging_max_attempts=max(_parse_int(_get_env("AGING_MAX_ATTEMPTS", "3"), 3), 1),
        report_batch_failures=_parse_bool(_get_env("REPORT_BATCH_FAILURES", "true"), True),
        require_auth=_parse_bool(_get_env("REQUIRE_AUTH", "false"), False),
        cors_allow_origins=_parse_origins(_get_env("CORS_ALLOW_ORIGINS", "*")),
        enable_basic_auth=enable_basic_auth,
        basic_auth_username=os.getenv("BASIC_AUTH_USERNAME") if enable_basic_auth else None,
        basic_auth_password=os.getenv("BASIC_AUTH_PASSWORD") if enable_basic_auth else None,
        log_level=_get_env("LOG_LEVEL", "INFO").strip().upper(),
        log_format=log_format,
    )
