"""
Configuration Module
Runtime settings for the synchronization job, read from the environment
(and an optional .env file) with sensible defaults.
"""

import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from .api_client import APIConfig


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if not value:
        return default
    return int(value)


@dataclass
class SyncConfig:
    """Settings for one synchronization run."""
    contracts_batch_size: int = 100
    suppliers_batch_size: int = 20
    amendments_batch_size: int = 10
    derived_extraction_threshold: int = 50
    months_to_process: int = 3
    checkpoint_file: Path = field(
        default_factory=lambda: Path(tempfile.gettempdir()) / "sync-safepoint.json"
    )
    dump_dir: Path = field(
        default_factory=lambda: Path(tempfile.gettempdir()) / "smlouvy-dumps"
    )
    data_dir: Path = field(default_factory=lambda: Path("data"))

    # Phases
    import_contracts: bool = True
    extract_suppliers: bool = True
    create_amendments: bool = False
    geocode: bool = True

    # One-shot overrides
    force_reset: bool = False
    force_extract_suppliers: bool = False
    force_create_amendments: bool = False
    refresh_dumps: bool = False

    @classmethod
    def from_env(cls, **overrides: Any) -> "SyncConfig":
        """
        Build a configuration from environment variables.

        Args:
            **overrides: Values that take precedence over the environment
                (typically CLI flags). None values are ignored.

        Returns:
            SyncConfig instance
        """
        load_dotenv()

        defaults = cls()
        config = cls(
            contracts_batch_size=_env_int("SYNC_BATCH_SIZE", defaults.contracts_batch_size),
            months_to_process=_env_int("SYNC_MONTHS", defaults.months_to_process),
            checkpoint_file=Path(os.getenv("SYNC_CHECKPOINT_FILE", str(defaults.checkpoint_file))),
            dump_dir=Path(os.getenv("SYNC_DUMP_DIR", str(defaults.dump_dir))),
            data_dir=Path(os.getenv("SYNC_DATA_DIR", str(defaults.data_dir))),
            import_contracts=_env_bool("SYNC_IMPORT_CONTRACTS", defaults.import_contracts),
            extract_suppliers=_env_bool("SYNC_EXTRACT_SUPPLIERS", defaults.extract_suppliers),
            create_amendments=_env_bool("SYNC_CREATE_AMENDMENTS", defaults.create_amendments),
            geocode=_env_bool("SYNC_GEOCODE", defaults.geocode),
            force_reset=_env_bool("FORCE_RESET_SAFEPOINT", defaults.force_reset),
            force_extract_suppliers=_env_bool("FORCE_EXTRACT_SUPPLIERS", defaults.force_extract_suppliers),
            force_create_amendments=_env_bool("FORCE_CREATE_AMENDMENTS", defaults.force_create_amendments),
            refresh_dumps=_env_bool("SYNC_REFRESH_DUMPS", defaults.refresh_dumps),
        )

        for key, value in overrides.items():
            if value is not None:
                setattr(config, key, value)

        return config


def get_db_config() -> Dict[str, Any]:
    """
    Database connection settings.

    DATABASE_URL wins when set; otherwise the individual DB_* variables are used.
    """
    load_dotenv()

    dsn: Optional[str] = os.getenv("DATABASE_URL")
    if dsn:
        return {'dsn': dsn}

    return {
        'host': os.getenv('DB_HOST', 'localhost'),
        'port': int(os.getenv('DB_PORT', 5432)),
        'database': os.getenv('DB_NAME', 'smlouvy'),
        'user': os.getenv('DB_USER', 'smlouvy'),
        'password': os.getenv('DB_PASSWORD', 'smlouvy')
    }


def get_api_config() -> APIConfig:
    """HTTP client settings, with the geocoder identity taken from the environment."""
    load_dotenv()

    config = APIConfig()
    config.user_agent = os.getenv('GEOCODER_USER_AGENT', config.user_agent)
    config.contact_email = os.getenv('GEOCODER_CONTACT_EMAIL') or config.contact_email
    config.dump_base_url = os.getenv('SMLOUVY_DUMP_URL', config.dump_base_url)
    return config
