"""Application configuration loaded from environment variables."""

import re
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    app_port: int = 8060
    data_dir: Path = Path("/app/data")
    log_level: str = "info"
    max_upload_size_mb: int = 10

    # Full SQLAlchemy URL; when empty the SQLite file under data_dir is used
    database_url_override: str = ""

    # Route silent fallbacks (unknown timezone, unparseable dates) to the row error list
    strict_parsing: bool = False

    # Time column assumed for posts spreadsheets exported without a header row
    default_time_header: str = "Time (GMT +8)"

    # Number of most recent daily analytics rows in a client report
    client_report_days: int = 30

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @field_validator("default_time_header")
    @classmethod
    def validate_time_header(cls, v: str) -> str:
        """The default time header must carry a timezone label, e.g. "Time (GMT +8)"."""
        if not re.search(r"time\s*\(([^)]+)\)", v, re.IGNORECASE):
            raise ValueError(
                f"DEFAULT_TIME_HEADER must look like 'Time (<timezone>)', got '{v}'"
            )
        return v

    @field_validator("max_upload_size_mb", "client_report_days")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be a positive integer")
        return v

    @property
    def db_path(self) -> Path:
        return self.data_dir / "postflow.db"

    @property
    def database_url(self) -> str:
        if self.database_url_override:
            return self.database_url_override
        return f"sqlite:///{self.db_path}"

    @property
    def max_upload_size_bytes(self) -> int:
        return self.max_upload_size_mb * 1024 * 1024


settings = Settings()
