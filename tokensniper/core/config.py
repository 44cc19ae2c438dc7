"""
Configuration Manager for the sniper bot
Loads configuration from YAML files with environment variable support
"""

import math
import os
import re
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from tokensniper.core.errors import ValidationError


MIN_SCAN_INTERVAL_MS = 10_000


@dataclass(frozen=True)
class ScannerConfig:
    """
    Token scanner filters and scheduling

    Replaced wholesale on update, never mutated in place.
    """
    min_liquidity_sol: float = 5.0
    max_rug_score: float = 70.0
    max_top_holder_pct: float = 80.0
    only_verified: bool = False
    scan_interval_ms: int = 30_000
    auto_scan: bool = True

    def validate(self) -> None:
        """
        Check config invariants

        Raises:
            ValidationError: On the first violated invariant
        """
        if not isinstance(self.scan_interval_ms, int) or isinstance(self.scan_interval_ms, bool):
            raise ValidationError(f"scan_interval_ms must be an integer, got {self.scan_interval_ms!r}")
        if self.scan_interval_ms < MIN_SCAN_INTERVAL_MS:
            raise ValidationError(
                f"scan_interval_ms must be >= {MIN_SCAN_INTERVAL_MS}, got {self.scan_interval_ms}"
            )
        for name in ("min_liquidity_sol", "max_rug_score", "max_top_holder_pct"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
                raise ValidationError(f"{name} must be a finite number, got {value!r}")
        for name in ("only_verified", "auto_scan"):
            if not isinstance(getattr(self, name), bool):
                raise ValidationError(f"{name} must be a boolean, got {getattr(self, name)!r}")
        if not 0 <= self.max_rug_score <= 100:
            raise ValidationError(f"max_rug_score must be within 0-100, got {self.max_rug_score}")
        if not 0 <= self.max_top_holder_pct <= 100:
            raise ValidationError(
                f"max_top_holder_pct must be within 0-100, got {self.max_top_holder_pct}"
            )
        if self.min_liquidity_sol < 0:
            raise ValidationError(f"min_liquidity_sol must be >= 0, got {self.min_liquidity_sol}")

    @property
    def scan_interval_s(self) -> float:
        return self.scan_interval_ms / 1000

    def with_changes(self, **changes: Any) -> "ScannerConfig":
        """Copy with some fields replaced (not validated)"""
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "min_liquidity_sol": self.min_liquidity_sol,
            "max_rug_score": self.max_rug_score,
            "max_top_holder_pct": self.max_top_holder_pct,
            "only_verified": self.only_verified,
            "scan_interval_ms": self.scan_interval_ms,
            "auto_scan": self.auto_scan,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScannerConfig":
        defaults = cls()
        return cls(
            min_liquidity_sol=float(data.get("min_liquidity_sol", defaults.min_liquidity_sol)),
            max_rug_score=float(data.get("max_rug_score", defaults.max_rug_score)),
            max_top_holder_pct=float(data.get("max_top_holder_pct", defaults.max_top_holder_pct)),
            only_verified=bool(data.get("only_verified", defaults.only_verified)),
            scan_interval_ms=int(data.get("scan_interval_ms", defaults.scan_interval_ms)),
            auto_scan=bool(data.get("auto_scan", defaults.auto_scan)),
        )


@dataclass
class LogConfig:
    """Logging configuration"""
    level: str = "INFO"
    format: str = "json"
    output_file: Optional[str] = None


@dataclass
class MetricsConfig:
    """Metrics configuration"""
    enable_histogram: bool = True
    max_samples: int = 10_000
    export_interval_s: int = 60


@dataclass
class ApiConfig:
    """Token discovery and rug report endpoints"""
    moralis_base_url: str = "https://solana-gateway.moralis.io"
    moralis_api_key: str = ""
    rugcheck_base_url: str = "https://api.rugcheck.xyz/v1/tokens"
    request_timeout_s: float = 10.0
    discovery_limit: int = 100
    max_concurrent_requests: int = 5


@dataclass
class TradingConfig:
    """Trade execution settings"""
    paper_mode: bool = True
    wallet_address: str = ""
    default_buy_amount_sol: float = 0.1
    slippage_bps: int = 500
    paper_starting_balance_sol: float = 10.0
    paper_sol_price_usd: float = 150.0


@dataclass
class HistoryConfig:
    """Position and transaction refresh settings"""
    transaction_limit: int = 100
    transaction_refresh_interval_s: float = 30.0
    position_refresh_interval_s: float = 30.0
    auto_refresh: bool = True


@dataclass
class StorageConfig:
    """Best-effort session cache"""
    session_cache_path: Optional[str] = "data/session.json"


@dataclass
class BotConfig:
    """Complete bot configuration"""
    scanner_config: ScannerConfig = field(default_factory=ScannerConfig)
    log_config: LogConfig = field(default_factory=LogConfig)
    metrics_config: MetricsConfig = field(default_factory=MetricsConfig)
    api_config: ApiConfig = field(default_factory=ApiConfig)
    trading_config: TradingConfig = field(default_factory=TradingConfig)
    history_config: HistoryConfig = field(default_factory=HistoryConfig)
    storage_config: StorageConfig = field(default_factory=StorageConfig)


class ConfigurationManager:
    """Manages bot configuration from YAML files and environment variables"""

    def __init__(self, config_path: str):
        """
        Initialize configuration manager

        Args:
            config_path: Path to YAML configuration file
        """
        self.config_path = Path(config_path)
        self._config_data: Optional[Dict[str, Any]] = None
        self._bot_config: Optional[BotConfig] = None

    def load_config(self) -> BotConfig:
        """
        Load and validate configuration from file

        Returns:
            BotConfig: Validated configuration object

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config is invalid
        """
        if not self.config_path.exists():
            raise FileNotFoundError(
                f"Configuration file not found: {self.config_path}"
            )

        with open(self.config_path, 'r') as f:
            raw_config = yaml.safe_load(f) or {}

        if not isinstance(raw_config, dict):
            raise ValueError(f"Configuration root must be a mapping: {self.config_path}")

        self._config_data = self._substitute_env_vars(raw_config)
        self._bot_config = self._parse_config(self._config_data)

        return self._bot_config

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value by dot-notation key

        Args:
            key: Dot-notation key (e.g., "scanner.max_rug_score")
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        if self._config_data is None:
            raise RuntimeError("Configuration not loaded. Call load_config() first.")

        value: Any = self._config_data
        for k in key.split('.'):
            if isinstance(value, dict):
                value = value.get(k)
                if value is None:
                    return default
            else:
                return default

        return value

    def _substitute_env_vars(self, config: Any) -> Any:
        """
        Recursively substitute ${VAR_NAME} environment variables

        Supports both full-value and embedded substitution.
        """
        if isinstance(config, dict):
            return {k: self._substitute_env_vars(v) for k, v in config.items()}
        elif isinstance(config, list):
            return [self._substitute_env_vars(item) for item in config]
        elif isinstance(config, str):
            def replace_var(match):
                var_name = match.group(1)
                value = os.getenv(var_name)
                if value is None:
                    raise ValueError(
                        f"Environment variable {var_name} not found"
                    )
                return value

            return re.sub(r'\$\{([^}]+)\}', replace_var, config)
        else:
            return config

    def _parse_config(self, config: Dict[str, Any]) -> BotConfig:
        """
        Parse raw configuration into typed objects

        Raises:
            ValueError: If configuration is invalid
        """
        scanner_config = ScannerConfig.from_dict(config.get('scanner') or {})
        try:
            scanner_config.validate()
        except ValidationError as e:
            raise ValueError(f"Invalid scanner configuration: {e}") from e

        log_data = config.get('logging') or {}
        log_config = LogConfig(
            level=log_data.get('level', 'INFO'),
            format=log_data.get('format', 'json'),
            output_file=log_data.get('output_file')
        )

        metrics_data = config.get('metrics') or {}
        metrics_config = MetricsConfig(
            enable_histogram=metrics_data.get('enable_histogram', True),
            max_samples=metrics_data.get('max_samples', 10_000),
            export_interval_s=metrics_data.get('export_interval_s', 60)
        )

        api_data = config.get('api') or {}
        api_defaults = ApiConfig()
        api_config = ApiConfig(
            moralis_base_url=api_data.get('moralis_base_url', api_defaults.moralis_base_url),
            moralis_api_key=api_data.get('moralis_api_key', ''),
            rugcheck_base_url=api_data.get('rugcheck_base_url', api_defaults.rugcheck_base_url),
            request_timeout_s=float(api_data.get('request_timeout_s', 10.0)),
            discovery_limit=int(api_data.get('discovery_limit', 100)),
            max_concurrent_requests=int(api_data.get('max_concurrent_requests', 5))
        )
        if api_config.discovery_limit <= 0:
            raise ValueError("api.discovery_limit must be positive")

        trading_data = config.get('trading') or {}
        trading_config = TradingConfig(
            paper_mode=trading_data.get('paper_mode', True),
            wallet_address=trading_data.get('wallet_address', ''),
            default_buy_amount_sol=float(trading_data.get('default_buy_amount_sol', 0.1)),
            slippage_bps=int(trading_data.get('slippage_bps', 500)),
            paper_starting_balance_sol=float(trading_data.get('paper_starting_balance_sol', 10.0)),
            paper_sol_price_usd=float(trading_data.get('paper_sol_price_usd', 150.0))
        )
        if trading_config.default_buy_amount_sol <= 0:
            raise ValueError("trading.default_buy_amount_sol must be positive")

        history_data = config.get('history') or {}
        history_config = HistoryConfig(
            transaction_limit=int(history_data.get('transaction_limit', 100)),
            transaction_refresh_interval_s=float(history_data.get('transaction_refresh_interval_s', 30.0)),
            position_refresh_interval_s=float(history_data.get('position_refresh_interval_s', 30.0)),
            auto_refresh=history_data.get('auto_refresh', True)
        )
        if history_config.transaction_limit <= 0:
            raise ValueError("history.transaction_limit must be positive")

        storage_data = config.get('storage') or {}
        storage_config = StorageConfig(
            session_cache_path=storage_data.get('session_cache_path', "data/session.json")
        )

        return BotConfig(
            scanner_config=scanner_config,
            log_config=log_config,
            metrics_config=metrics_config,
            api_config=api_config,
            trading_config=trading_config,
            history_config=history_config,
            storage_config=storage_config
        )

