# stickershop/config.py
import os
import logging
from pathlib import Path
from dotenv import load_dotenv
from typing import Optional

# Load environment variables
load_dotenv()

# Base directory of the project
BASE_DIR = Path(__file__).resolve().parent.parent

def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")

class Config:
    """Configuration settings for the shop API"""

    # Database settings
    DATABASE_URL: Optional[str] = os.getenv("DATABASE_URL")

    # Payment settings (Stripe)
    STRIPE_SECRET_KEY: Optional[str] = os.getenv("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET: Optional[str] = os.getenv("STRIPE_WEBHOOK_SECRET")
    STRIPE_API_URL: str = os.getenv("STRIPE_API_URL", "https://api.stripe.com/v1")

    # Shipping settings (EasyPost)
    EASYPOST_API_KEY: Optional[str] = os.getenv("EASYPOST_API_KEY")
    EASYPOST_TEST_MODE: bool = _env_bool("EASYPOST_TEST_MODE")
    EASYPOST_API_URL: str = os.getenv("EASYPOST_API_URL", "https://api.easypost.com/v2")
    SHIP_FROM_ADDRESS_ID: Optional[str] = os.getenv("SHIP_FROM_ADDRESS_ID")

    # Heuristic vendor rate warning (calls per rolling minute)
    VENDOR_CALLS_PER_MINUTE_WARNING: int = int(os.getenv("VENDOR_CALLS_PER_MINUTE_WARNING", "60"))

    # Admin settings
    ADMIN_API_KEY: Optional[str] = os.getenv("ADMIN_API_KEY")

    # Web settings
    FRONTEND_URL: str = os.getenv("FRONTEND_URL", "http://localhost:3000")
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "4000"))

    # Other settings
    TIMEZONE: str = os.getenv("TZ", "America/Denver")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Paths
    DATA_DIR = Path(__file__).resolve().parent / "data"
    LOG_DIR = BASE_DIR / "logs"
    PRICING_TABLE_PATH = Path(os.getenv("PRICING_TABLE_PATH", str(DATA_DIR / "pricing.json")))

    # Ensure directories exist
    LOG_DIR.mkdir(exist_ok=True)

def setup_logging():
    """Configure logging settings"""
    log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    log_file = Config.LOG_DIR / "shop.log"

    logging.basicConfig(
        level=getattr(logging, Config.LOG_LEVEL.upper(), logging.INFO),
        format=log_format,
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler()
        ]
    )
