import os
from dataclasses import dataclass, field
from typing import List


def _split(value: str) -> List[str]:
    return [v.strip() for v in value.split(",") if v.strip()]


@dataclass(frozen=True)
class Settings:
    """Runtime configuration, read from the environment."""

    database_url: str = "mongodb://localhost:27017"
    database_name: str = "storefront"
    jwt_secret: str = "fallback_secret_key"
    jwt_expire_days: int = 7
    bcrypt_rounds: int = 12
    store_timeout_ms: int = 30000
    tax_rate: float = 0.08
    free_shipping_threshold: float = 100.0
    flat_shipping_fee: float = 10.0
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    port: int = 8000

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.getenv("DATABASE_URL", cls.database_url),
            database_name=os.getenv("DATABASE_NAME", cls.database_name),
            jwt_secret=os.getenv("JWT_SECRET", cls.jwt_secret),
            jwt_expire_days=int(os.getenv("JWT_EXPIRE_DAYS", cls.jwt_expire_days)),
            bcrypt_rounds=int(os.getenv("BCRYPT_ROUNDS", cls.bcrypt_rounds)),
            store_timeout_ms=int(os.getenv("STORE_TIMEOUT_MS", cls.store_timeout_ms)),
            tax_rate=float(os.getenv("TAX_RATE", cls.tax_rate)),
            free_shipping_threshold=float(os.getenv("FREE_SHIPPING_THRESHOLD", cls.free_shipping_threshold)),
            flat_shipping_fee=float(os.getenv("FLAT_SHIPPING_FEE", cls.flat_shipping_fee)),
            cors_origins=_split(os.getenv("CORS_ORIGINS", "*")),
            port=int(os.getenv("PORT", cls.port)),
        )
