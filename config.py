import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        queue_path: Path,
        remote_url: str,
        remote_timeout_secs: float,
        sync_max_retries: int,
        sync_retry_delay_ms: int,
        sync_probe_interval_secs: int,
        idempotency_ttl_secs: int,
        cache_max_age_secs: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.queue_path = queue_path
        self.remote_url = remote_url
        self.remote_timeout_secs = remote_timeout_secs
        self.sync_max_retries = sync_max_retries
        self.sync_retry_delay_ms = sync_retry_delay_ms
        self.sync_probe_interval_secs = sync_probe_interval_secs
        self.idempotency_ttl_secs = idempotency_ttl_secs
        self.cache_max_age_secs = cache_max_age_secs


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("EXPENSES_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "expenses.db"
    database_url = os.getenv("EXPENSES_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("EXPENSES_TIMEZONE", "Europe/Berlin")
    queue_path = Path(
        os.getenv("EXPENSES_QUEUE_PATH", str(data_dir / "offline_queue.db"))
    )
    remote_url = os.getenv("EXPENSES_REMOTE_URL", "http://127.0.0.1:8000")
    remote_timeout_secs = float(os.getenv("EXPENSES_REMOTE_TIMEOUT_SECS", "15"))
    sync_max_retries = int(os.getenv("EXPENSES_SYNC_MAX_RETRIES", "3"))
    sync_retry_delay_ms = int(os.getenv("EXPENSES_SYNC_RETRY_DELAY_MS", "1000"))
    sync_probe_interval_secs = int(
        os.getenv("EXPENSES_SYNC_PROBE_INTERVAL_SECS", "30")
    )
    idempotency_ttl_secs = int(os.getenv("EXPENSES_IDEMPOTENCY_TTL_SECS", "86400"))
    cache_max_age_secs = int(os.getenv("EXPENSES_CACHE_MAX_AGE_SECS", "86400"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        queue_path=queue_path,
        remote_url=remote_url,
        remote_timeout_secs=remote_timeout_secs,
        sync_max_retries=sync_max_retries,
        sync_retry_delay_ms=sync_retry_delay_ms,
        sync_probe_interval_secs=sync_probe_interval_secs,
        idempotency_ttl_secs=idempotency_ttl_secs,
        cache_max_age_secs=cache_max_age_secs,
    )
