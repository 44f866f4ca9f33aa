"""CertAnchor configuration via pydantic-settings."""

import warnings
from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_INSECURE_DEFAULTS = {
    "api_key": "insecure-admin-key-change-me",
}


class CertAnchorSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="CERTANCHOR_")

    environment: str = "development"
    log_level: str = "INFO"

    # Database
    db_url: str = "sqlite+aiosqlite:///./data/certanchor.db"

    # API
    api_title: str = "CertAnchor"
    api_version: str = "0.1.0"
    api_key: str = "insecure-admin-key-change-me"
    host: str = "0.0.0.0"
    port: int = 8080
    api_prefix: str = ""
    cors_origins: list[str] = ["http://localhost:3000", "http://localhost:8000"]

    # Identity
    certificate_prefix: str = "CERT"
    sequence_width: int = 4
    institute_name: str = "Digital Excellence Institute of Technology"

    # Ledger
    ledger_enabled: bool = True
    ledger_rpc_url: str = "http://127.0.0.1:8545"
    ledger_contract_address: str = ""
    ledger_private_key: str = ""
    ledger_gas_limit: int = 500000
    ledger_gas_price: int = 20_000_000_000
    ledger_timeout: float = 20.0
    ledger_health_ttl: float = 30.0  # seconds

    # Content-addressed storage
    pinata_api_key: str = ""
    pinata_secret_key: str = ""
    pinata_api_url: str = "https://api.pinata.cloud"
    storage_gateways: list[str] = [
        "https://ipfs.io/ipfs/{address}",
        "https://gateway.pinata.cloud/ipfs/{address}",
        "https://dweb.link/ipfs/{address}",
        "https://{address}.ipfs.dweb.link",
    ]
    storage_timeout: float = 15.0
    document_magic: str = "%PDF"
    document_min_size: int = 1000

    # Mail
    email_provider: str = ""
    email_api_key: str = ""
    email_from: str = "certificates@example.org"
    email_from_name: str = "Certificate Office"
    mail_timeout: float = 30.0
    frontend_url: str = "http://localhost:3000"

    # Batch issuance
    batch_max_items: int = 50
    batch_group_size: int = 5

    # Rendering and housekeeping
    temp_dir: str = "./data/tmp"
    render_timeout: float = 60.0
    temp_max_age: int = 3600  # seconds
    temp_sweep_interval: int = 1800  # seconds
    cleanup_retry_delay: float = 5.0
    provisional_stale_after: int = 3600  # seconds

    @field_validator("storage_gateways")
    @classmethod
    def _require_gateway(cls, value: list[str]) -> list[str]:
        gateways = [g.strip() for g in value if g and g.strip()]
        if not gateways:
            raise ValueError("at least one storage gateway is required")
        return gateways

    @property
    def pinning_configured(self) -> bool:
        return bool(self.pinata_api_key and self.pinata_secret_key)

    @property
    def document_magic_bytes(self) -> bytes:
        return self.document_magic.encode("latin-1")

    def validate_for_production(self) -> None:
        """Raise if insecure defaults are used in non-development environments."""
        insecure_fields = [
            field
            for field, default in _INSECURE_DEFAULTS.items()
            if getattr(self, field) == default
        ]

        if self.environment != "development" and insecure_fields:
            env_vars = ", ".join(f"CERTANCHOR_{f.upper()}" for f in insecure_fields)
            raise RuntimeError(
                f"Insecure default values detected in '{self.environment}' environment. "
                f"Set these environment variables to secure values: {env_vars}. "
                "Generate secrets with: python -c \"import secrets; print(secrets.token_urlsafe(48))\""
            )

        if insecure_fields:
            warnings.warn(
                "Using insecure default API key — set CERTANCHOR_API_KEY for production",
                UserWarning,
                stacklevel=2,
            )


@lru_cache
def get_settings() -> CertAnchorSettings:
    settings = CertAnchorSettings()
    settings.validate_for_production()
    return settings
