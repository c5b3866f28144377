"""
Configuration module for Weather Arb.

Contains API endpoints, location mappings, pricing constants and scanner parameters.
"""

from dataclasses import dataclass, field
from pathlib import Path
import os
from dotenv import load_dotenv

load_dotenv()


def _env_list(name: str, default: str) -> list[str]:
    raw = os.getenv(name, default)
    return [item.strip().lower() for item in raw.split(",") if item.strip()]


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class LocationConfig:
    """Configuration for a tradeable location."""
    key: str
    label: str
    latitude: float
    longitude: float
    slug_name: str  # Name as used in Polymarket event slugs
    timezone: str


LOCATIONS: dict[str, LocationConfig] = {
    "nyc": LocationConfig("nyc", "New York City", 40.7128, -74.0060, "nyc", "America/New_York"),
    "london": LocationConfig("london", "London", 51.5074, -0.1278, "london", "Europe/London"),
    "seoul": LocationConfig("seoul", "Seoul", 37.5665, 126.9780, "seoul", "Asia/Seoul"),
    "chicago": LocationConfig("chicago", "Chicago", 41.8781, -87.6298, "chicago", "America/Chicago"),
    "dallas": LocationConfig("dallas", "Dallas", 32.7767, -96.7970, "dallas", "America/Chicago"),
    "miami": LocationConfig("miami", "Miami", 25.7617, -80.1918, "miami", "America/New_York"),
    "paris": LocationConfig("paris", "Paris", 48.8566, 2.3522, "paris", "Europe/Paris"),
    "toronto": LocationConfig("toronto", "Toronto", 43.6532, -79.3832, "toronto", "America/Toronto"),
    "seattle": LocationConfig("seattle", "Seattle", 47.6062, -122.3321, "seattle", "America/Los_Angeles"),
}


@dataclass
class APIConfig:
    """API configuration settings."""
    # Open-Meteo (no API key required)
    open_meteo_base_url: str = "https://api.open-meteo.com/v1"

    # Polymarket
    polymarket_clob_url: str = field(
        default_factory=lambda: os.getenv("POLYMARKET_CLOB_URL", "https://clob.polymarket.com")
    )
    polymarket_gamma_url: str = "https://gamma-api.polymarket.com"

    http_timeout: float = 30.0


@dataclass
class PolygonConfig:
    """Polygon blockchain configuration."""
    rpc_url: str = field(
        default_factory=lambda: os.getenv("POLYGON_RPC_URL", "https://polygon-rpc.com")
    )
    chain_id: int = 137  # Polygon mainnet
    usdc_address: str = "0x2791Bca1f2de4661ED88A30C99A7a9449Aa84174"
    # Neg Risk CTF Exchange, used by all weather markets (negRisk: true)
    exchange_address: str = "0xC5d563A36AE78145C45a50134d48A1215220f80a"


@dataclass
class PricingConfig:
    """Forecast uncertainty model constants."""
    # Sigma grows with time-to-close: same-day ~2°F, next-day ~4°F
    near_hours: float = 6.0
    far_hours: float = 30.0
    near_sigma_f: float = 2.0
    far_sigma_f: float = 4.0

    # Brackets resolve on whole degrees, so "40-41°F" covers [39.5, 41.5)
    boundary_half_step: float = 0.5

    # Skip markets closing sooner than this
    close_buffer_minutes: float = 30.0


@dataclass
class ScannerConfig:
    """Scanner and strategy tick configuration."""
    wallet_name: str = field(default_factory=lambda: os.getenv("WEATHER_ARB_WALLET", "default"))
    locations: list[str] = field(
        default_factory=lambda: _env_list("WEATHER_ARB_LOCATIONS", "nyc,chicago,miami")
    )

    # Sizing
    trade_amount_usdc: float = field(
        default_factory=lambda: float(os.getenv("TRADE_AMOUNT_USDC", "5.0"))
    )
    max_position_usdc: float = field(
        default_factory=lambda: float(os.getenv("MAX_POSITION_USDC", "10.0"))
    )

    # Edge thresholds
    min_edge: float = field(
        default_factory=lambda: float(os.getenv("MIN_EDGE", "0.20"))
    )
    min_fair_value: float = field(
        default_factory=lambda: float(os.getenv("MIN_FAIR_VALUE", "0.40"))
    )

    # Scheduling
    interval_seconds: int = field(
        default_factory=lambda: int(os.getenv("SCAN_INTERVAL_SECONDS", "120"))
    )
    dry_run: bool = field(default_factory=lambda: _env_bool("DRY_RUN", "true"))

    # Shared status files; every process must resolve the same directory
    data_dir: Path = field(
        default_factory=lambda: Path(
            os.getenv("WEATHER_ARB_DATA_DIR", str(Path.home() / ".weather-arb"))
        )
    )
    stale_after_seconds: int = 600

    @property
    def trade_size_usdc(self) -> float:
        """Spend per order: the lesser of per-trade amount and per-bracket cap."""
        return min(self.trade_amount_usdc, self.max_position_usdc)


@dataclass
class Config:
    """Main configuration container."""
    api: APIConfig = field(default_factory=APIConfig)
    polygon: PolygonConfig = field(default_factory=PolygonConfig)
    pricing: PricingConfig = field(default_factory=PricingConfig)
    scanner: ScannerConfig = field(default_factory=ScannerConfig)

    log_level: str = field(
        default_factory=lambda: os.getenv("LOG_LEVEL", "INFO")
    )
    env: str = field(
        default_factory=lambda: os.getenv("ENV", "development")
    )

    @property
    def is_production(self) -> bool:
        return self.env == "production"


# Global configuration instance
config = Config()


def get_location(key: str) -> LocationConfig:
    """Get configuration for a specific location."""
    key = key.lower()
    if key not in LOCATIONS:
        raise ValueError(f"Unknown location: {key}. Valid options: {list(LOCATIONS.keys())}")
    return LOCATIONS[key]


def get_all_locations() -> list[str]:
    """Get list of all configured location keys."""
    return list(LOCATIONS.keys())
