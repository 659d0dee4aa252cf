from dotenv import load_dotenv
from pathlib import Path
import os
ROOT_DIR = Path(__file__).resolve().parents[1]
load_dotenv(ROOT_DIR / ".env")


def get_database_url_env():
    return os.getenv("DATABASE_URL")


def get_allow_sqlite_fallback_env():
    return os.getenv("ALLOW_SQLITE_FALLBACK")


def get_app_data_directory_env():
    return os.getenv("APP_DATA_DIRECTORY")


# Chain RPC endpoints
def get_bsc_rpc_url_env():
    return os.getenv("BSC_RPC_URL")


def get_solana_rpc_url_env():
    return os.getenv("SOLANA_RPC_URL")


def get_chain_rpc_timeout_seconds_env():
    return os.getenv("CHAIN_RPC_TIMEOUT_SECONDS")


def get_crypto_verification_timeout_seconds_env():
    return os.getenv("CRYPTO_VERIFICATION_TIMEOUT_SECONDS")


# Receiving wallets
def get_bep20_wallet_address_env():
    return os.getenv("BEP20_WALLET_ADDRESS")


def get_sol_wallet_address_env():
    return os.getenv("SOL_WALLET_ADDRESS")


def get_bsc_usdt_contract_env():
    return os.getenv("BSC_USDT_CONTRACT")


def get_crypto_payment_expiry_minutes_env():
    return os.getenv("CRYPTO_PAYMENT_EXPIRY_MINUTES")


def get_crypto_sweep_interval_seconds_env():
    return os.getenv("CRYPTO_SWEEP_INTERVAL_SECONDS")


# Price feed
def get_bsc_coingecko_api_env():
    return os.getenv("BSC_COINGECKO_API")


def get_solana_coingecko_api_env():
    return os.getenv("SOLANA_COINGECKO_API")


def get_usdt_usd_fallback_rate_env():
    return os.getenv("USDT_USD_FALLBACK_RATE")


def get_sol_usd_fallback_rate_env():
    return os.getenv("SOL_USD_FALLBACK_RATE")


# Credits
def get_usd_per_credit_env():
    return os.getenv("USD_PER_CREDIT")


def get_default_available_credits_env():
    return os.getenv("DEFAULT_AVAILABLE_CREDITS")


def env_int(value: str | None, default: int) -> int:
    try:
        return int(value) if value is not None else default
    except Exception:
        return default


def env_float(value: str | None, default: float) -> float:
    try:
        return float(value) if value is not None else default
    except Exception:
        return default


def env_flag(value: str | None) -> bool:
    return (value or "").strip().lower() in {"1", "true", "yes", "on"}
