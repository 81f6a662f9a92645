"""
Configuration management for the storefront engine.

Loads settings from YAML config file and provides typed access.
Secrets (database URL, Supabase keys) always come from the environment.
"""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional
import yaml

# Load environment variables from .env file
from dotenv import load_dotenv
load_dotenv()

from storefront.utils.logger import configure_logging


def _project_root() -> Path:
    """Return project root (parent of storefront package)."""
    return Path(__file__).resolve().parent.parent.parent


DEFAULT_CONFIG_PATH = _project_root() / "config" / "default.yaml"


@dataclass
class StorefrontConfig:
    """Configuration for the cart pricing engine."""

    # Currency (display only; all amounts are integer minor units)
    currency: str = "BDT"
    minor_units_per_major: int = 100

    # Shipping rule
    shipping_mode: str = "zone"                 # "flat" or "zone"
    shipping_flat_fee: int = 6000               # minor units
    shipping_zone_fees: Dict[str, int] = field(default_factory=lambda: {
        "inside_dhaka": 6000,
        "outside_dhaka": 12000,
    })
    shipping_default_zone: str = "outside_dhaka"
    shipping_free_over: Optional[int] = None    # subtotal at/above which shipping is free

    # Checkout
    enforce_coupon_cap: bool = False            # conditional insert in the SQL order store

    # Logging (LOG_LEVEL in the environment overrides)
    log_level: str = "INFO"

    # API
    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    # Backends (environment only)
    database_url: str = ""
    supabase_url: str = ""
    supabase_key: str = ""

    @classmethod
    def from_yaml(cls, config_path: Optional[Path] = None) -> "StorefrontConfig":
        """Load configuration from YAML file, then apply environment secrets."""
        path = config_path or DEFAULT_CONFIG_PATH
        data = {}
        if path.exists():
            with open(path, 'r') as f:
                data = yaml.safe_load(f) or {}

        store_config = data.get('store', {})
        shipping_config = data.get('shipping', {})
        checkout_config = data.get('checkout', {})
        api_config = data.get('api', {})
        logging_config = data.get('logging', {})

        defaults = cls()
        config = cls(
            currency=store_config.get('currency', defaults.currency),
            minor_units_per_major=store_config.get('minor_units_per_major', defaults.minor_units_per_major),
            shipping_mode=shipping_config.get('mode', defaults.shipping_mode),
            shipping_flat_fee=shipping_config.get('flat_fee', defaults.shipping_flat_fee),
            shipping_zone_fees=dict(shipping_config.get('zones', defaults.shipping_zone_fees)),
            shipping_default_zone=shipping_config.get('default_zone', defaults.shipping_default_zone),
            shipping_free_over=shipping_config.get('free_over', defaults.shipping_free_over),
            enforce_coupon_cap=checkout_config.get('enforce_coupon_cap', defaults.enforce_coupon_cap),
            cors_origins=list(api_config.get('cors_origins', defaults.cors_origins)),
            log_level=str(logging_config.get('level', defaults.log_level)),
        )
        config.apply_env()
        return config

    def apply_env(self) -> None:
        """Read backend credentials from the environment."""
        self.database_url = os.environ.get("DATABASE_URL", "")
        self.supabase_url = os.environ.get("SUPABASE_URL", "")
        self.supabase_key = (
            os.environ.get("SUPABASE_SERVICE_ROLE_KEY") or os.environ.get("SUPABASE_KEY", "")
        )


# Global config instance
_config: Optional[StorefrontConfig] = None


def get_config() -> StorefrontConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = StorefrontConfig.from_yaml()
        configure_logging(_config.log_level)
    return _config


def set_config(config: StorefrontConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
    configure_logging(config.log_level)
