import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel


class Config(BaseModel):
    addr: str = ":8787"
    data_dir: Path = Path("./data")
    database_dsn: Optional[str] = None
    log_level: str = "INFO"

    @property
    def icons_dir(self) -> Path:
        return self.data_dir / "icons"

    @property
    def cache_dir(self) -> Path:
        return self.data_dir / "cache"

    @property
    def database_url(self) -> str:
        if self.database_dsn:
            return self.database_dsn
        return f"sqlite:///{self.data_dir / 'hearth.db'}"

    @property
    def host(self) -> str:
        host, _, _port = self.addr.rpartition(":")
        return host or "0.0.0.0"

    @property
    def port(self) -> int:
        _host, _, port = self.addr.rpartition(":")
        return int(port or 8787)


def load_config() -> Config:
    """Read HEARTH_* environment variables into a Config."""
    data_dir = Path(os.getenv("HEARTH_DATA_DIR") or "./data")
    return Config(
        addr=os.getenv("HEARTH_ADDR") or ":8787",
        data_dir=data_dir,
        database_dsn=os.getenv("HEARTH_DB_DSN") or None,
        log_level=(os.getenv("HEARTH_LOG_LEVEL") or "INFO").upper(),
    )


config = load_config()


def get_config() -> Config:
    return config
