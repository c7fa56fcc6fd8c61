import os
from dotenv import load_dotenv

load_dotenv()

class Settings:
    APP_NAME = "Leveraged Trade Ledger"
    ENV = os.getenv("ENV", "development")
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./ledger.db")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Every store call is bounded by this many seconds
    STORE_TIMEOUT_SECONDS = float(os.getenv("STORE_TIMEOUT_SECONDS", "5"))
    WORKER_THREADS = int(os.getenv("WORKER_THREADS", "4"))

    # Settlement
    SETTLEMENT_BATCH_LIMIT = int(os.getenv("SETTLEMENT_BATCH_LIMIT", "100"))
    SETTLEMENT_LEDGER_RETRIES = int(os.getenv("SETTLEMENT_LEDGER_RETRIES", "3"))
    SETTLEMENT_RETRY_BACKOFF_SECONDS = float(os.getenv("SETTLEMENT_RETRY_BACKOFF_SECONDS", "0.2"))

    # Admin override payout: favorable half the stake, unfavorable the full stake
    ADMIN_WIN_MULTIPLIER = os.getenv("ADMIN_WIN_MULTIPLIER", "0.5")
    ADMIN_LOSS_MULTIPLIER = os.getenv("ADMIN_LOSS_MULTIPLIER", "-1.0")

settings = Settings()
