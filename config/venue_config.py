"""
Venue configuration for exchange, news and advisory endpoints.

Credentials are read from environment variables, never from the YAML
settings file.
"""

from dataclasses import dataclass
import os


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class VenueConfig:
    """Exchange, news and advisory endpoint configuration."""

    # Exchange credentials (REAL mode only)
    api_key: str = ""
    api_secret: str = ""
    testnet: bool = True

    # Public market data
    base_url: str = "https://api.binance.com"
    testnet_url: str = "https://testnet.binance.vision"
    kline_interval: str = "1m"
    request_timeout: float = 10.0
    max_retries: int = 3

    # News
    news_api_key: str = ""

    # Local advisory model
    advisory_url: str = "http://localhost:11434"
    advisory_model: str = "llama3"
    advisory_enabled: bool = False

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key and self.api_secret)

    @property
    def market_data_url(self) -> str:
        """REST base URL for the selected environment."""
        return self.testnet_url if self.testnet else self.base_url

    @classmethod
    def from_env(cls) -> 'VenueConfig':
        """
        Load configuration from environment variables.

        Environment variables:
        - EXCHANGE_API_KEY / EXCHANGE_API_SECRET: exchange credentials
        - EXCHANGE_TESTNET: 'true' or 'false' (default: true)
        - EXCHANGE_BASE_URL: override the production REST URL
        - NEWS_API_KEY: news endpoint key (news disabled when empty)
        - ADVISORY_URL / ADVISORY_MODEL: local model endpoint
        - ADVISORY_ENABLED: 'true' to consult the advisory model
        """
        config = cls()
        config.api_key = os.getenv('EXCHANGE_API_KEY', '')
        config.api_secret = os.getenv('EXCHANGE_API_SECRET', '')
        config.testnet = _env_flag('EXCHANGE_TESTNET', True)
        config.base_url = os.getenv('EXCHANGE_BASE_URL', config.base_url)
        config.news_api_key = os.getenv('NEWS_API_KEY', '')
        config.advisory_url = os.getenv('ADVISORY_URL', config.advisory_url)
        config.advisory_model = os.getenv('ADVISORY_MODEL', config.advisory_model)
        config.advisory_enabled = _env_flag('ADVISORY_ENABLED', False)
        return config
