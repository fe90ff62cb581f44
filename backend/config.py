import json
from decimal import Decimal
from typing import Dict, Any, Optional
from pathlib import Path

class Config:
    """Business rules loaded from a JSON file next to this module"""

    def __init__(self, config_file: str = "config.json"):
        self.config_file = config_file
        self._config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from JSON file"""
        config_path = Path(__file__).parent / self.config_file

        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        try:
            with open(config_path, 'r') as f:
                config = json.load(f)

            return config
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in configuration file: {e}")

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value by key (supports dot notation)"""
        keys = key.split('.')
        value = self._config

        try:
            for k in keys:
                value = value[k]
            return value
        except (KeyError, TypeError):
            return default

    def get_commission_config(self) -> Dict[str, Any]:
        """Get referral commission configuration"""
        return self._config.get("commission", {})

    def get_commission_percentage(self, plan_override: Optional[Decimal] = None) -> Decimal:
        """Commission rate as a fraction (0.10 == 10%); a plan override wins"""
        if plan_override is not None:
            return Decimal(str(plan_override))
        return Decimal(str(self.get_commission_config().get("default_percentage", "0.10")))

    def get_commission_release_days(self) -> int:
        return int(self.get_commission_config().get("release_days", 30))

    def get_min_withdrawal_amount(self) -> Decimal:
        return Decimal(str(self._config.get("withdrawal", {}).get("min_amount", "50.00")))

    def get_tax_retention_years(self) -> int:
        return int(self._config.get("lgpd", {}).get("tax_retention_years", 5))

    def get_billing_cycle_days(self, cycle: str) -> int:
        """Days until the next charge for a billing cycle (MONTHLY, QUARTERLY, YEARLY)"""
        cycles = self._config.get("billing_cycles", {})
        return int(cycles.get(cycle, cycles.get("MONTHLY", 30)))

    def get_product_cache_ttl(self) -> int:
        return int(self._config.get("cache", {}).get("products_ttl_seconds", 300))

    def set_commission_config(self, commission: Dict[str, Any]):
        """Update commission settings and persist to disk"""
        current = self.get_commission_config()
        current.update(commission)
        self._config["commission"] = current
        self._save_config()

    def set_min_withdrawal_amount(self, amount: Decimal):
        self._config.setdefault("withdrawal", {})["min_amount"] = str(amount)
        self._save_config()

    def reload(self):
        """Reload configuration from file"""
        self._config = self._load_config()

    def _save_config(self):
        """Persist current configuration to JSON file"""
        config_path = Path(__file__).parent / self.config_file
        with open(config_path, 'w') as f:
            json.dump(self._config, f, indent=2)

# Global configuration instance
config = Config()
