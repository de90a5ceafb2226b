"""
Shift Break Bot — Centralized configuration.

Loads all settings from .env and validates required keys.
This module is the foundation for every other module in the project.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

# Load .env from project root (one level up from breakbot/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)

POOL_KEYS = ("morning", "evening", "night")


def _parse_ids(value: str | list[int] | None) -> list[int]:
    if isinstance(value, list):
        return [int(v) for v in value]
    if isinstance(value, str) and value.strip():
        return [int(part.strip()) for part in value.split(",") if part.strip()]
    return []


class PoolChats(BaseModel):
    """Chats forming one pool's break channel and reservation channel."""

    break_chat_ids: list[int] = Field(default_factory=list)
    rez_chat_ids: list[int] = Field(default_factory=list)

    @field_validator("break_chat_ids", "rez_chat_ids", mode="before")
    @classmethod
    def parse_chat_ids(cls, v: str | list[int] | None) -> list[int]:
        return _parse_ids(v)


class CommunityConfig(BaseModel):
    """Read-only lookup data for one served community."""

    community_id: int
    admin_user_ids: list[int] = Field(default_factory=list)
    pools: dict[str, PoolChats] = Field(default_factory=dict)
    admin_break_chat_ids: list[int] = Field(default_factory=list)

    @field_validator("admin_user_ids", "admin_break_chat_ids", mode="before")
    @classmethod
    def parse_ids(cls, v: str | list[int] | None) -> list[int]:
        return _parse_ids(v)

    def chat_ids_for(self, pool_key: str, channel_type: str) -> list[int]:
        """Chats for a pool channel; pool 'admin' maps to the admin break chats."""
        if pool_key == "admin":
            return list(self.admin_break_chat_ids) if channel_type == "break" else []
        chats = self.pools.get(pool_key)
        if chats is None:
            return []
        return list(chats.break_chat_ids if channel_type == "break" else chats.rez_chat_ids)


class ChannelContext(BaseModel):
    """What an incoming chat id means to the bot."""

    community_id: int
    pool_key: str
    channel_type: str  # "break" | "rez"


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Telegram
    TELEGRAM_BOT_TOKEN: str

    # Communities (one per served group)
    COMMUNITIES: list[CommunityConfig] = Field(default_factory=list)

    # Single process-wide timezone
    TIMEZONE: str = "Europe/Istanbul"

    # SQLite
    DATABASE_PATH: str = "data/breaks.db"

    # Maintenance timer and shutdown grace period
    MAINTENANCE_INTERVAL_SECONDS: int = 30
    SHUTDOWN_TIMEOUT_SECONDS: int = 10

    @field_validator("MAINTENANCE_INTERVAL_SECONDS", "SHUTDOWN_TIMEOUT_SECONDS", mode="before")
    @classmethod
    def parse_seconds(cls, v: str | int) -> int:
        return int(v)

    def community(self, community_id: int) -> CommunityConfig | None:
        for cfg in self.COMMUNITIES:
            if cfg.community_id == community_id:
                return cfg
        return None

    def channel_context(self, chat_id: int) -> ChannelContext | None:
        """Resolve a chat id to (community, pool, channel type), or None."""
        for cfg in self.COMMUNITIES:
            for pool_key, chats in cfg.pools.items():
                if chat_id in chats.break_chat_ids:
                    return ChannelContext(
                        community_id=cfg.community_id, pool_key=pool_key, channel_type="break",
                    )
                if chat_id in chats.rez_chat_ids:
                    return ChannelContext(
                        community_id=cfg.community_id, pool_key=pool_key, channel_type="rez",
                    )
        return None

    def community_for_chat(self, chat_id: int) -> CommunityConfig | None:
        """Community owning a chat: the group itself, a pool chat or an admin chat."""
        for cfg in self.COMMUNITIES:
            if chat_id == cfg.community_id or chat_id in cfg.admin_break_chat_ids:
                return cfg
        ctx = self.channel_context(chat_id)
        if ctx is not None:
            return self.community(ctx.community_id)
        return None


def _community_from_env(prefix: str, community_id: str) -> CommunityConfig:
    pools = {
        key: PoolChats(
            break_chat_ids=os.getenv(f"{prefix}{key.upper()}_BREAK_CHAT_IDS", ""),
            rez_chat_ids=os.getenv(f"{prefix}{key.upper()}_REZ_CHAT_IDS", ""),
        )
        for key in POOL_KEYS
    }
    return CommunityConfig(
        community_id=int(community_id),
        admin_user_ids=os.getenv(f"{prefix}ADMIN_USER_IDS", ""),
        pools=pools,
        admin_break_chat_ids=os.getenv(f"{prefix}ADMIN_BREAK_CHAT_IDS", ""),
    )


def _load_settings() -> Settings:
    """Load settings from environment, validating required keys."""
    token = os.getenv("TELEGRAM_BOT_TOKEN", "")
    community_id = os.getenv("COMMUNITY_ID", "")

    if not token or token.startswith("your-"):
        print("ERROR: TELEGRAM_BOT_TOKEN is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    if not community_id or not community_id.lstrip("-").isdigit():
        print("ERROR: COMMUNITY_ID is missing or not numeric in .env", file=sys.stderr)
        sys.exit(1)

    communities = [_community_from_env("", community_id)]

    # Second community (optional)
    community_id_2 = os.getenv("COMMUNITY_ID_2", "")
    if community_id_2:
        communities.append(_community_from_env("G2_", community_id_2))

    return Settings(
        TELEGRAM_BOT_TOKEN=token,
        COMMUNITIES=communities,
        TIMEZONE=os.getenv("TIMEZONE", "Europe/Istanbul"),
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/breaks.db"),
        MAINTENANCE_INTERVAL_SECONDS=os.getenv("MAINTENANCE_INTERVAL_SECONDS", "30"),
        SHUTDOWN_TIMEOUT_SECONDS=os.getenv("SHUTDOWN_TIMEOUT_SECONDS", "10"),
    )


# Singleton — imported by all other modules as:
#   from breakbot.config import settings
settings = _load_settings()
