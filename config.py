"""
Kaspa Explorer API Configuration
Environment-driven settings for the HTTP API and the WebSocket push service
"""

import os
from typing import Dict, Any


class Config:
    """Base configuration"""

    # Kaspa Node Configuration
    # -------------------------------------------------------------------------
    # Development fallback only. Point NODE_WRPC_URL at the node's wRPC
    # (serde-json encoding) listener in any real deployment.
    # -------------------------------------------------------------------------
    NODE_WRPC_URL = os.getenv("NODE_WRPC_URL", "ws://localhost:18110")  # DEV ONLY default
    NODE_CONNECT_TIMEOUT = float(os.getenv("NODE_CONNECT_TIMEOUT", "5"))
    NODE_RPC_TIMEOUT = float(os.getenv("NODE_RPC_TIMEOUT", "10"))

    # Chain Configuration
    SOMPI_PER_KASPA = 100000000
    HASHRATE_WINDOW_SIZE = int(os.getenv("HASHRATE_WINDOW_SIZE", "6000"))
    ADDRESS_PREFIXES = tuple(
        prefix.strip()
        for prefix in os.getenv("ADDRESS_PREFIXES", "kaspa,kaspatest,kaspasim,kaspadev").split(",")
        if prefix.strip()
    )

    # HTTP API Configuration
    API_HOST = os.getenv("API_HOST", "127.0.0.1")
    API_PORT = int(os.getenv("API_PORT", "3001"))
    DEBUG = os.getenv("DEBUG", "false").lower() == "true"

    # WebSocket Configuration
    WS_HOST = os.getenv("WS_HOST", "0.0.0.0")
    WS_PORT = int(os.getenv("WS_PORT", "18910"))

    # CORS Configuration
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*").split(",")

    # Logging Configuration
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    @classmethod
    def to_dict(cls) -> Dict[str, Any]:
        """Convert configuration to dictionary"""
        return {
            key: getattr(cls, key)
            for key in dir(cls)
            if key.isupper()
        }

    @classmethod
    def validate(cls) -> None:
        """Validate configuration"""
        errors = []

        if not cls.NODE_WRPC_URL:
            errors.append("NODE_WRPC_URL is required")
        elif not cls.NODE_WRPC_URL.startswith(("ws://", "wss://")):
            errors.append("NODE_WRPC_URL must be a ws:// or wss:// URL")

        if cls.NODE_CONNECT_TIMEOUT <= 0 or cls.NODE_RPC_TIMEOUT <= 0:
            errors.append("Node timeouts must be positive")

        if cls.HASHRATE_WINDOW_SIZE < 1:
            errors.append("HASHRATE_WINDOW_SIZE must be positive")

        if not cls.ADDRESS_PREFIXES:
            errors.append("ADDRESS_PREFIXES must name at least one prefix")

        for name in ("API_PORT", "WS_PORT"):
            port = getattr(cls, name)
            if port < 1 or port > 65535:
                errors.append(f"{name} must be between 1 and 65535")

        if errors:
            raise ValueError(f"Configuration validation failed: {', '.join(errors)}")


class DevelopmentConfig(Config):
    """Development configuration"""

    DEBUG = True
    LOG_LEVEL = "DEBUG"


class ProductionConfig(Config):
    """Production configuration"""

    DEBUG = False
    LOG_LEVEL = "WARNING"


class TestConfig(Config):
    """Test configuration"""

    NODE_WRPC_URL = "ws://localhost:18110"
    NODE_CONNECT_TIMEOUT = 1
    NODE_RPC_TIMEOUT = 1


# Environment-based configuration selection
ENV_CONFIGS = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "test": TestConfig,
}


def get_config() -> Config:
    """Get configuration based on environment"""
    env = os.getenv("EXPLORER_ENV", "development")
    config_class = ENV_CONFIGS.get(env, DevelopmentConfig)
    config_class.validate()
    return config_class


# Export current configuration
config = get_config()
