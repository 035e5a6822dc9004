import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

# Load environment variables from .env file
load_dotenv()

# Solana RPC configuration
SOLANA_RPC_URL = os.getenv("SOLANA_RPC_URL", "https://api.mainnet-beta.solana.com")
RPC_COMMITMENT = os.getenv("RPC_COMMITMENT", "confirmed")

# External services
JITO_BLOCK_ENGINE_URL = os.getenv("JITO_BLOCK_ENGINE_URL", "https://mainnet.block-engine.jito.wtf/api/v1")
SOLSCAN_API_URL = os.getenv("SOLSCAN_API_URL", "https://pro-api.solscan.io/v2.0")
SOLSCAN_API_TOKEN = os.getenv("SOLSCAN_API_TOKEN")
PUMPPORTAL_API_URL = os.getenv("PUMPPORTAL_API_URL", "https://pumpportal.fun/api")
JUPITER_API_URL = os.getenv("JUPITER_API_URL", "https://quote-api.jup.ag/v6")
COINGECKO_API_URL = os.getenv("COINGECKO_API_URL", "https://api.coingecko.com/api/v3")
HTTP_TIMEOUT = float(os.getenv("HTTP_TIMEOUT", "10"))  # seconds

# Logging configuration
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_DIR = os.getenv("LOG_DIR", "logs")

# Wallets
MAIN_WALLET_PRIVATE_KEY = os.getenv("MAIN_WALLET_PRIVATE_KEY")
WALLET_DIR = os.getenv("WALLET_DIR", "wallets")
WALLET_GROUP_SIZE = 5  # Jito accepts at most 5 transactions per bundle

# Confirmation / retry defaults
MAX_SUBMISSION_ATTEMPTS = int(os.getenv("MAX_SUBMISSION_ATTEMPTS", "3"))
MAX_POLL_ATTEMPTS = int(os.getenv("MAX_POLL_ATTEMPTS", "5"))
INITIAL_POLL_DELAY = float(os.getenv("INITIAL_POLL_DELAY", "1.0"))  # seconds
MAX_POLL_DELAY = float(os.getenv("MAX_POLL_DELAY", "8.0"))  # seconds
RATE_LIMIT_MAX_RETRIES = int(os.getenv("RATE_LIMIT_MAX_RETRIES", "3"))
RATE_LIMIT_BASE_DELAY = float(os.getenv("RATE_LIMIT_BASE_DELAY", "1.0"))  # seconds
CONFIRM_TIMEOUT = float(os.getenv("CONFIRM_TIMEOUT", "45"))  # seconds per attempt
RESEND_INTERVAL = float(os.getenv("RESEND_INTERVAL", "2.0"))  # seconds
SEND_RETRIES = int(os.getenv("SEND_RETRIES", "3"))

# Trading defaults
TRADE_AMOUNT_USD = float(os.getenv("TRADE_AMOUNT_USD", "0.01"))
PRIORITY_FEE_SOL = float(os.getenv("PRIORITY_FEE_SOL", "0.001"))
SLIPPAGE_PERCENT = float(os.getenv("SLIPPAGE_PERCENT", "10"))
SLIPPAGE_BPS = int(os.getenv("SLIPPAGE_BPS", "100"))
JITO_TIP_LAMPORTS = int(os.getenv("JITO_TIP_LAMPORTS", "1000000"))  # 0.001 SOL
MIN_TRADE_INTERVAL_SEC = float(os.getenv("MIN_TRADE_INTERVAL_SEC", "15"))
MAX_TRADE_INTERVAL_SEC = float(os.getenv("MAX_TRADE_INTERVAL_SEC", "45"))
BUY_SELL_PAUSE_SEC = float(os.getenv("BUY_SELL_PAUSE_SEC", "5"))
# Fraction of the detected token balance sold per cycle; 1.0 sells everything.
SELL_FRACTION = float(os.getenv("SELL_FRACTION", "1.0"))
FALLBACK_SOL_PRICE_USD = float(os.getenv("FALLBACK_SOL_PRICE_USD", "230"))

# Funding
MIN_FUNDING_SOL = 0.005
DEFAULT_SOL_PER_WALLET = float(os.getenv("DEFAULT_SOL_PER_WALLET", "0.01"))

# Well-known mints
SOL_MINT = "So11111111111111111111111111111111111111112"
LAMPORTS_PER_SOL = 1_000_000_000


class Settings(BaseModel):
    """Snapshot of the environment configuration handed to each run."""

    rpc_url: str = SOLANA_RPC_URL
    commitment: str = RPC_COMMITMENT
    jito_url: str = JITO_BLOCK_ENGINE_URL
    solscan_url: str = SOLSCAN_API_URL
    solscan_token: Optional[str] = SOLSCAN_API_TOKEN
    pumpportal_url: str = PUMPPORTAL_API_URL
    jupiter_url: str = JUPITER_API_URL
    coingecko_url: str = COINGECKO_API_URL
    http_timeout: float = HTTP_TIMEOUT
    main_wallet_private_key: Optional[str] = MAIN_WALLET_PRIVATE_KEY
    wallet_dir: str = WALLET_DIR
    trade_amount_usd: float = TRADE_AMOUNT_USD
    priority_fee_sol: float = PRIORITY_FEE_SOL
    slippage_percent: float = SLIPPAGE_PERCENT
    slippage_bps: int = SLIPPAGE_BPS
    jito_tip_lamports: int = JITO_TIP_LAMPORTS
    min_trade_interval: float = MIN_TRADE_INTERVAL_SEC
    max_trade_interval: float = MAX_TRADE_INTERVAL_SEC
    buy_sell_pause: float = BUY_SELL_PAUSE_SEC
    sell_fraction: float = Field(default=SELL_FRACTION, gt=0, le=1)
    fallback_sol_price: float = FALLBACK_SOL_PRICE_USD

    @classmethod
    def from_env(cls) -> "Settings":
        return cls()

    def require_main_wallet(self) -> str:
        """Return the main wallet key or fail with a descriptive error."""
        if not self.main_wallet_private_key:
            raise ValueError("No MAIN_WALLET_PRIVATE_KEY found in environment variables")
        return self.main_wallet_private_key
