"""
ScrapeGuard — Configuration via Pydantic Settings.

All settings are loaded from environment variables or .env file.
"""

from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application-wide settings loaded from env / .env."""

    # ── General ──────────────────────────────────────────────
    app_name: str = "ScrapeGuard"
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "info"

    # ── Reverse Proxy ────────────────────────────────────────
    target_url: str = Field(
        default="http://localhost:3000",
        description="Protected website that allowed traffic is forwarded to",
    )
    proxy_timeout: float = Field(
        default=30.0,
        description="Timeout in seconds for upstream requests",
    )

    # ── Redis ────────────────────────────────────────────────
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL for client profiles and challenges",
    )
    redis_timeout: float = Field(
        default=0.5,
        description="Socket / connect timeout in seconds for store operations",
    )

    # ── Database ─────────────────────────────────────────────
    database_url: str = Field(
        default="sqlite+aiosqlite:///./scrapeguard.db",
        description="SQLAlchemy database URL for the security event log",
    )

    # ── Thresholds ───────────────────────────────────────────
    max_requests_per_minute: int = Field(
        default=60,
        description="Recognised for compatibility; not enforced by the detection pipeline",
    )
    suspicious_threshold: float = Field(
        default=0.75, description="Composite score (0–1) that triggers a challenge",
    )
    ban_threshold: float = Field(
        default=0.9, description="Composite score (0–1) that triggers a temporary ban",
    )
    entropy_threshold: float = Field(
        default=3.2, description="Navigation entropy (bits) below which browsing looks mechanical",
    )

    # ── Profile storage ──────────────────────────────────────
    sliding_window_size: int = Field(
        default=100, description="Max intervals / paths kept per client",
    )
    profile_ttl: int = Field(
        default=86400, description="Seconds an idle client profile is kept",
    )

    # ── Challenges & bans ────────────────────────────────────
    challenge_ttl: int = Field(
        default=300, description="Seconds an issued challenge stays valid",
    )
    challenge_levels: int = Field(
        default=3, ge=1, le=3,
        description="Number of challenge difficulty tiers in use",
    )
    ban_base_seconds: int = Field(
        default=600, description="Base temporary ban duration",
    )
    honeypot_field_names: list[str] = Field(
        default_factory=lambda: ["website", "url", "phone-number"],
    )

    # ── Scope ────────────────────────────────────────────────
    excluded_paths: list[str] = Field(
        default_factory=lambda: [
            "/public/",
            "/images/",
            "/css/",
            "/js/",
            "/favicon.ico",
            "/robots.txt",
            "/sitemap.xml",
            "/health",
            "/api/challenge",
            "/api/admin/",
            "/api/docs",
            "/openapi.json",
        ],
    )
    whitelisted_ips: list[str] = Field(
        default_factory=lambda: ["127.0.0.1", "localhost"],
    )
    trusted_proxies: list[str] = Field(
        default_factory=lambda: ["127.0.0.1", "::1"],
        description="Peers whose X-Forwarded-For header is honoured",
    )

    # ── Content protection ───────────────────────────────────
    high_value_paths: list[str] = Field(
        default_factory=lambda: [
            "/api/products",
            "/api/prices",
            "/api/services",
            "/api/blog",
        ],
    )
    disclosure_delay_ms: int = Field(
        default=800,
        description="Delay applied to high-value paths for challenged clients",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = {"debug", "info", "warning", "error", "critical"}
        if v.lower() not in allowed:
            raise ValueError(f"log_level must be one of {allowed}")
        return v.lower()

    @field_validator("suspicious_threshold", "ban_threshold")
    @classmethod
    def validate_threshold(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("score thresholds must be within [0, 1]")
        return v

    model_config = {
        "env_prefix": "SCRAPEGUARD_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
    }


# Singleton
settings = Settings()
