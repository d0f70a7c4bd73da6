from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings


# Program deployments per network. Mainnet addresses can be overridden via env.
NETWORK_DEFAULTS: dict[str, dict[str, str]] = {
    "devnet": {
        "PROGRAM_ID": "4PhNzNQ7XZAPrFmwcBFMe2ZY8ZaQWos8nJjcsjv1CHyh",
        "USDC_MINT": "GXJV8YiRpXpbUHdf3q6n4hEKNeBPXK9Kn9uGjm6gZksq",
        "RPC_URL": "https://api.devnet.solana.com",
    },
    "mainnet": {
        "PROGRAM_ID": "3wi11KBqF3Qa7JPP6CH4AFrcXbvaYEXMsEr9cmWQy8Zj",
        "USDC_MINT": "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v",
        "RPC_URL": "https://api.mainnet-beta.solana.com",
    },
}


class Settings(BaseSettings):
    """Crank settings."""

    # Network
    NETWORK: Literal["devnet", "mainnet"] = "devnet"
    RPC_URL: str | None = None
    RPC_TIMEOUT_SEC: float = 15.0
    PROGRAM_ID: str | None = None
    USDC_MINT: str | None = None
    VRF_PROGRAM_ID: str = "Vrf1RNUjXmQGjmQrQLvJHs9SNkvDJEsRVFPkfSQUwGz"
    VRF_ORACLE_QUEUE: str = "Cuj97ggrhhidhbu39TijNVqE74xvKJ69gDervRUXAxGh"
    MOCK_LEDGER: bool = False

    # Operator wallet
    CRANK_KEYPAIR_PATH: str = "service-wallet.json"
    ADMIN_KEYPAIR_PATH: str | None = "keypar.json"
    ALLOW_CRANK_KEYPAIR_REUSE: bool = False

    # Transaction tuning
    COMPUTE_UNIT_LIMIT: int = 600_000
    PRIORITY_FEE_MICROLAMPORTS: int = 20_000

    # Loop cadence
    POLL_INTERVAL_MS: int = 3000
    LOCK_BUFFER_SEC: int = 3
    HEALTH_LOG_INTERVAL_SEC: int = 60

    # Background cleanup
    CLOSE_DELAY_SEC: int = 5
    CLEANUP_BACKOFF_MIN_SEC: int = 5
    CLEANUP_BACKOFF_MAX_SEC: int = 60
    PARTICIPANT_CLEANUP_BATCH: int = 12
    PARTICIPANT_FETCH_CHUNK: int = 50

    # Scanner / startup recovery
    SCAN_BATCH_SIZE: int = 20
    SCAN_MAX_ROUNDS: int = 200
    SCAN_NULL_STREAK_LIMIT: int = 20
    STARTUP_BACKFILL_SCAN_ROUNDS: int = 50
    STARTUP_BACKFILL_BATCH: int = 25

    # Stuck-round warnings (0 disables a status)
    STUCK_LOCKED_SEC: int = 90
    STUCK_VRF_REQUESTED_SEC: int = 180
    STUCK_SETTLED_SEC: int = 300
    STUCK_CANCELLED_SEC: int = 180
    STUCK_WARN_REPEAT_SEC: int = 60

    # Archive (Firebase RTDB)
    FIREBASE_DATABASE_URL: str | None = None
    ARCHIVE_TIMEOUT_SEC: float = 10.0

    # Social notifications (Tapestry)
    TAPESTRY_API_URL: str = "https://api.usetapestry.dev/api/v1"
    TAPESTRY_API_KEY: str | None = None
    TAPESTRY_NAMESPACE: str = "winny"
    NOTIFY_TIMEOUT_SEC: float = 6.0

    # App
    APP_NAME: str = "Jackpot Crank"
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        extra = "ignore"

    @property
    def rpc_url(self) -> str:
        return self.RPC_URL or NETWORK_DEFAULTS[self.NETWORK]["RPC_URL"]

    @property
    def program_id(self) -> str:
        return self.PROGRAM_ID or NETWORK_DEFAULTS[self.NETWORK]["PROGRAM_ID"]

    @property
    def usdc_mint(self) -> str:
        return self.USDC_MINT or NETWORK_DEFAULTS[self.NETWORK]["USDC_MINT"]

    @property
    def poll_interval_sec(self) -> float:
        return self.POLL_INTERVAL_MS / 1000


@lru_cache()
def get_settings() -> Settings:
    return Settings()
