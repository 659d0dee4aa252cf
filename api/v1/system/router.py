"""
System status and configuration endpoint
Provides helpful information about the payment service configuration
"""

from fastapi import APIRouter
from utils.config_validator import ConfigKeyStatus, PaymentConfig

SYSTEM_ROUTER = APIRouter(prefix="/api/v1/system", tags=["system"])


@SYSTEM_ROUTER.get("/status")
async def get_system_status():
    """
    Get current system status and configuration

    Useful for debugging configuration issues
    """
    is_valid, errors, warnings = PaymentConfig.validate_setup()

    settings_status = {}

    for key, info in PaymentConfig.REQUIRED_KEYS.items():
        status, _ = PaymentConfig.get_status(key)
        settings_status[key] = {
            "display_name": info["display"],
            "status": status.value,
            "configured": status == ConfigKeyStatus.CONFIGURED,
        }

    for key, info in PaymentConfig.OPTIONAL_KEYS.items():
        status, _ = PaymentConfig.get_status(key)
        settings_status[key] = {
            "display_name": info["display"],
            "status": status.value,
            "configured": status == ConfigKeyStatus.CONFIGURED,
            "optional": True,
        }

    return {
        "service": "Crypto Payments",
        "status": "operational" if is_valid else "configuration_incomplete",
        "settings": settings_status,
        "errors": errors,
        "warnings": warnings,
    }


@SYSTEM_ROUTER.get("/health")
async def health_check():
    """
    Simple health check endpoint
    """
    return {
        "status": "healthy",
        "service": "Crypto Payments API",
    }


@SYSTEM_ROUTER.get("/config-help")
async def get_config_help():
    return {
        "service": "Crypto Payments",
        "configuration": {
            "required_keys": [
                {
                    "key": key,
                    "display": info["display"],
                    "purpose": info["purpose"],
                    "how_to_get": info["how_to"],
                }
                for key, info in PaymentConfig.REQUIRED_KEYS.items()
            ],
            "optional_keys": [
                {
                    "key": key,
                    "display": info["display"],
                    "purpose": info["purpose"],
                    "how_to_get": info["how_to"],
                    "note": info.get("note", ""),
                }
                for key, info in PaymentConfig.OPTIONAL_KEYS.items()
            ],
        },
        "setup_instructions": {
            "1_set_keys_in_env": "Update .env file with wallet addresses and RPC endpoints",
            "2_seed_plans": "Run python -m scripts.initialize_payment_plans",
            "3_restart_server": "Restart the FastAPI server",
            "4_check_status": "Visit /api/v1/system/status to verify configuration",
        },
        "environment_variables": {
            "CRYPTO_PAYMENT_EXPIRY_MINUTES": "Minutes before a pending request expires (default: 30)",
            "USD_PER_CREDIT": "USD price of one credit (default: 0.45)",
            "CRYPTO_VERIFICATION_TIMEOUT_SECONDS": "Upper bound on one verification (default: 45)",
            "CHAIN_RPC_TIMEOUT_SECONDS": "Timeout for a single RPC call (default: 20)",
            "CRYPTO_SWEEP_INTERVAL_SECONDS": "Expiry sweep interval, 0 disables (default: 300)",
        },
    }
