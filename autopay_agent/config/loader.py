"""
Autopay Agent - Configuration Loader

Loads and validates configuration from environment variables and .env files.
Returns a fresh AgentConfig on every call; callers pass it explicitly to the
components that need it.
"""

import logging
import os
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from pydantic import ValidationError

from ..errors import ConfigurationError
from .schemas import AgentConfig

logger = logging.getLogger(__name__)


def _optional_float(name: str) -> float | None:
    value = os.getenv(name)
    return float(value) if value else None


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


def _build_config_dict() -> dict[str, Any]:
    """Collect recognized environment variables into the config layout."""
    emergency = os.getenv("EMERGENCY_THRESHOLD", "0.005")

    return {
        "environment": os.getenv("ENVIRONMENT", "development"),
        "log_level": os.getenv("LOG_LEVEL", "INFO"),
        "scheduler": {
            "optimization_interval": float(os.getenv("OPTIMIZATION_INTERVAL", "30")),
            "rebalance_interval": float(os.getenv("REBALANCE_INTERVAL", "300")),
            "health_check_interval": float(os.getenv("HEALTH_CHECK_INTERVAL", "60")),
            "payment_sweep_interval": float(os.getenv("PAYMENT_SWEEP_INTERVAL", "60")),
            "usage_analysis_interval": float(os.getenv("USAGE_ANALYSIS_INTERVAL", "900")),
        },
        "policy": {
            "max_cost_per_transaction": float(os.getenv("MAX_COST_PER_TRANSACTION", "0.01")),
            "reliability_threshold": float(os.getenv("RELIABILITY_THRESHOLD", "0.95")),
            "emergency_threshold": float(emergency),
            "rebalance_savings_threshold": float(os.getenv("REBALANCE_SAVINGS_THRESHOLD", "0.001")),
            "default_chain": os.getenv("DEFAULT_CHAIN", "REI"),
        },
        "budget": {
            "enabled": _flag("BUDGET_ENABLED", "true"),
            "principal": os.getenv("BUDGET_PRINCIPAL", "agent"),
            "daily_limit": float(os.getenv("DAILY_BUDGET_LIMIT", "0.01")),
            "monthly_limit": float(os.getenv("MONTHLY_BUDGET_LIMIT", "0.1")),
            "emergency_threshold": float(emergency),
        },
        "router": {
            "base_url": os.getenv("ORACLE_BASE_URL") or None,
            "timeout": float(os.getenv("ORACLE_TIMEOUT", "5.0")),
            "suggestion_ttl": _optional_float("ROUTER_SUGGESTION_TTL"),
        },
        "observability": {
            "enable_metrics": _flag("ENABLE_METRICS", "true"),
            "enable_tracing": _flag("ENABLE_TRACING", "false"),
            "metrics_db_path": os.getenv("METRICS_DB_PATH") or None,
            "metrics_retention": float(os.getenv("METRICS_RETENTION", "604800")),
        },
    }


def load_config(env_file: str | None = None) -> AgentConfig:
    """
    Load configuration from environment variables and .env file.

    Args:
        env_file: Path to .env file (default: .env in the working directory)

    Returns:
        Validated AgentConfig instance

    Raises:
        ConfigurationError: If configuration is invalid
    """
    env_path = Path(env_file) if env_file else Path.cwd() / ".env"

    if env_path.exists():
        logger.info(f"Loading environment from {env_path}")
        try:
            load_dotenv(env_path, override=True)
        except Exception as e:
            logger.error(
                f"Failed to load .env file from {env_path}: {e}",
                extra={"path": str(env_path), "error": str(e)},
                exc_info=True,
            )
            raise ConfigurationError(
                f"Failed to load environment file: {e}",
                details={"path": str(env_path), "error": str(e)},
            ) from e
    else:
        logger.debug("No .env file found, using environment variables only")

    try:
        config_dict = _build_config_dict()
    except ValueError as e:
        # float()/int() conversions of malformed variables
        raise ConfigurationError(
            f"Malformed numeric environment variable: {e}",
            details={"error": str(e)},
        ) from e

    try:
        config = AgentConfig(**config_dict)
    except ValidationError as e:
        logger.error(
            f"Configuration validation failed: {e}",
            extra={"validation_errors": e.errors(), "config_dict_keys": list(config_dict.keys())},
        )
        raise ConfigurationError(
            "Configuration validation failed. Check your environment variables and configuration.",
            details={"validation_errors": e.errors()},
        ) from e

    logger.info(
        f"Configuration loaded successfully (environment: {config.environment})",
        extra={"environment": config.environment, "oracle_configured": config.router.base_url is not None},
    )
    return config
