"""Configuration and environment handling for halosync."""

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Identity conventions shared by every run
SOURCE_TAG = "halo_psa"
ORGANIZATION_ID_PREFIX = "halo_"
CONTACT_ID_PREFIX = "halo_user_"
SITE_ID_PREFIX = "halo_site_"

# Page caps per fetch (no cursor pagination on the endpoints used)
ORGANIZATION_PAGE_SIZE = 500
CONTACT_PAGE_SIZE = 1000
SITE_PAGE_SIZE = 1000

# Write grouping
DEFAULT_UPDATE_GROUP_SIZE = 10
DEFAULT_CREATE_BATCH_SIZE = 50

# Settings record
SETTINGS_KEY = "main"


class HaloPSAEnv:
    """HaloPSA credentials and URL fallbacks from the environment.

    The client secret is only ever read from the environment; every other
    value may be overridden by the stored integration-settings record.
    """

    def __init__(self):
        self.client_id: Optional[str] = os.getenv("HALOPSA_CLIENT_ID")
        self.client_secret: Optional[str] = os.getenv("HALOPSA_CLIENT_SECRET")
        self.tenant: Optional[str] = os.getenv("HALOPSA_TENANT")
        self.auth_url: Optional[str] = os.getenv("HALOPSA_AUTH_URL")
        self.api_url: Optional[str] = os.getenv("HALOPSA_API_URL")


class Config:
    """Central configuration object."""

    def __init__(self):
        # Load .env file if it exists
        env_path = Path(__file__).parent.parent.parent / ".env"
        if env_path.exists():
            load_dotenv(env_path)

        self.project_root = Path(__file__).parent.parent.parent

        # Local record store
        self.db_path: Path = Path(os.getenv("HALOSYNC_DB_PATH", "data/halosync.sqlite"))
        if not self.db_path.is_absolute():
            self.db_path = self.project_root / self.db_path

        # Logging
        self.log_level: str = os.getenv("HALOSYNC_LOG_LEVEL", "INFO")

        # Write grouping
        self.update_group_size: int = int(
            os.getenv("HALOSYNC_UPDATE_GROUP_SIZE", str(DEFAULT_UPDATE_GROUP_SIZE))
        )
        self.create_batch_size: int = int(
            os.getenv("HALOSYNC_CREATE_BATCH_SIZE", str(DEFAULT_CREATE_BATCH_SIZE))
        )

        # HTTP
        self.http_timeout_s: float = float(os.getenv("HALOSYNC_HTTP_TIMEOUT_S", "60"))

        self.halopsa = HaloPSAEnv()

    def ensure_directories(self) -> None:
        """Create necessary directories if they don't exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)


# Global config instance
config = Config()
