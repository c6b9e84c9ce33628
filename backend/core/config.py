import os
from typing import List, Literal
from dotenv import load_dotenv
import logging


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Load environment variables from .env file located in the parent directory.
# Environment variables explicitly set (e.g., by Docker Compose) take precedence.
BASE_DIR = os.path.dirname(os.path.dirname(__file__))
ENV_PATH = os.path.join(BASE_DIR, '.env')
load_dotenv(ENV_PATH)


def parse_cors(value: str) -> List[str]:
    """
    Parses CORS origins. Accepts comma-separated string or list-like string.
    Example: "http://localhost,http://127.0.0.1" → ["http://localhost", "http://127.0.0.1"]
    If the value is empty, a default list of common development origins is provided.
    """
    if not value:
        return [
            "http://localhost:3000",  # Next.js dev server
            "http://127.0.0.1:3000",
        ]
    if isinstance(value, str):
        value = value.strip()
        if value.startswith("[") and value.endswith("]"):
            return [i.strip().strip('"').strip("'") for i in value[1:-1].split(",")]
        return [i.strip() for i in value.split(",")]
    raise ValueError("Invalid CORS format")


def parse_hosts(value: str) -> List[str]:
    """Comma-separated host list; empty means none."""
    return [host.strip() for host in value.split(",") if host.strip()]


class Settings:
    # --- General Environment Settings ---
    ENVIRONMENT: Literal["local", "test", "staging",
                         "production"] = os.getenv('ENVIRONMENT', 'local')
    SERVICE_NAME: str = os.getenv('SERVICE_NAME', 'shc-commerce-api')

    # --- PostgreSQL Database Configuration ---
    POSTGRES_USER: str = os.getenv('POSTGRES_USER', 'shc')
    POSTGRES_PASSWORD: str = os.getenv('POSTGRES_PASSWORD', 'shc_password')
    POSTGRES_SERVER: str = os.getenv('POSTGRES_SERVER', 'postgres')
    POSTGRES_PORT: int = int(os.getenv('POSTGRES_PORT', 5432))
    POSTGRES_DB: str = os.getenv('POSTGRES_DB', 'shc_db')

    # Full database URL. Takes precedence over the individual components when set.
    POSTGRES_DB_URL: str = os.getenv('POSTGRES_DB_URL', "")

    # Seconds to wait for a pooled connection before giving up.
    DB_POOL_TIMEOUT: int = int(os.getenv('DB_POOL_TIMEOUT', 30))

    # --- CORS Configuration ---
    RAW_CORS_ORIGINS: str = os.getenv('BACKEND_CORS_ORIGINS', '')
    BACKEND_CORS_ORIGINS: List[str] = parse_cors(RAW_CORS_ORIGINS)

    # --- Proxies ---
    # Socket peers allowed to report the client address via X-Forwarded-For.
    TRUSTED_PROXIES: List[str] = parse_hosts(os.getenv('TRUSTED_PROXIES', ''))

    # --- Discount defaults ---
    # Used when the admin discount configuration row does not set a cap.
    DEFAULT_MAX_STACKABLE_DISCOUNTS: int = int(
        os.getenv('DEFAULT_MAX_STACKABLE_DISCOUNTS', 3))

    # --- Code redemption security defaults ---
    # Applied when no security configuration row has been saved by an admin.
    DEFAULT_DEVICE_LOCKING_ENABLED: bool = os.getenv(
        'DEFAULT_DEVICE_LOCKING_ENABLED', 'false').lower() == 'true'
    DEFAULT_IP_LOCKING_ENABLED: bool = os.getenv(
        'DEFAULT_IP_LOCKING_ENABLED', 'false').lower() == 'true'
    DEFAULT_ALLOW_DEVICE_CHANGE: bool = os.getenv(
        'DEFAULT_ALLOW_DEVICE_CHANGE', 'true').lower() == 'true'
    DEFAULT_DEVICE_CHANGE_LIMIT: int = int(
        os.getenv('DEFAULT_DEVICE_CHANGE_LIMIT', 3))
    DEFAULT_MAX_REDEMPTION_ATTEMPTS: int = int(
        os.getenv('DEFAULT_MAX_REDEMPTION_ATTEMPTS', 5))
    DEFAULT_RATE_LIMIT_WINDOW_HOURS: int = int(
        os.getenv('DEFAULT_RATE_LIMIT_WINDOW_HOURS', 1))
    DEFAULT_FRAUD_DETECTION_ENABLED: bool = os.getenv(
        'DEFAULT_FRAUD_DETECTION_ENABLED', 'true').lower() == 'true'
    DEFAULT_SUSPICIOUS_ATTEMPT_THRESHOLD: int = int(
        os.getenv('DEFAULT_SUSPICIOUS_ATTEMPT_THRESHOLD', 10))
    DEFAULT_BLOCK_SUSPICIOUS_IPS: bool = os.getenv(
        'DEFAULT_BLOCK_SUSPICIOUS_IPS', 'true').lower() == 'true'
    DEFAULT_AUTO_BLOCK_DURATION_HOURS: int = int(
        os.getenv('DEFAULT_AUTO_BLOCK_DURATION_HOURS', 24))
    # Failed attempts older than this no longer count toward a fraud block.
    FRAUD_OBSERVATION_WINDOW_HOURS: int = int(
        os.getenv('FRAUD_OBSERVATION_WINDOW_HOURS', 24))

    # --- Releases ---
    PLACEHOLDER_COVER_ART: str = os.getenv(
        'PLACEHOLDER_COVER_ART', '/api/placeholder/400/400')

    @property
    def SQLALCHEMY_DATABASE_URI(self) -> str:
        """
        Constructs the SQLAlchemy database URI.
        Prioritizes a full URL (POSTGRES_DB_URL) over individual components.
        """
        if self.POSTGRES_DB_URL:
            return self.POSTGRES_DB_URL

        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )


# Instantiate the settings object to be used throughout the application
settings = Settings()
