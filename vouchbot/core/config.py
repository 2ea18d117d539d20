from __future__ import annotations
import copy
import os
import yaml
from typing import Any

DEFAULT_DB_PATH = "vouchbot.sqlite3"
DEFAULT_CACHE_TTL = 60
DEFAULT_HEALTH_INTERVAL = 30
DEFAULT_MIN_MESSAGES = 50
DEFAULT_VOUCHES_FOR_ACCESS = 10
DEFAULT_MIN_WEEKLY_VOUCHES = 10

# Daily free carry limits per game and gamemode
DEFAULT_FREE_CARRIES = {
    "av": {
        "display_name": "Anime Vanguards",
        "limits": {
            "story": 5,
            "legend-stages": 4,
            "rift": 1,
            "inf": 1,
            "raids": 2,
            "sjw-dungeon": 1,
            "dungeons": 2,
            "portals": 1,
            "void": 1,
            "towers": 1,
            "events": 1,
        },
    },
    "als": {
        "display_name": "Anime Last Stand",
        "limits": {
            "story": 6,
            "legend-stages": 5,
            "raids": 5,
            "dungeons": 3,
            "survival": 4,
            "breach": 1,
            "portals": 6,
        },
    },
}


class Config(dict):
    @staticmethod
    def load(path: str) -> "Config":
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return Config(data)

    def get(self, *keys, default=None):
        cur: Any = self
        for k in keys:
            if isinstance(cur, dict) and k in cur:
                cur = cur[k]
            else:
                return default
        return cur

    # ------------------------------------------------------------------
    # Typed accessors with defaults
    # ------------------------------------------------------------------

    @property
    def token(self) -> str | None:
        return self.get("token") or os.getenv("DISCORD_BOT_TOKEN")

    @property
    def db_path(self) -> str:
        return str(self.get("database", "path", default=DEFAULT_DB_PATH))

    @property
    def cache_ttl(self) -> float:
        return float(self.get("cache", "ttl_seconds", default=DEFAULT_CACHE_TTL))

    @property
    def health_interval(self) -> float:
        return float(self.get("supervisor", "interval_seconds", default=DEFAULT_HEALTH_INTERVAL))

    @property
    def timezone(self) -> str:
        return str(self.get("quota", "timezone", default="UTC"))

    @property
    def min_messages(self) -> int:
        return int(self.get("free_carries", "min_messages", default=DEFAULT_MIN_MESSAGES))

    @property
    def vouches_for_access(self) -> int:
        return int(self.get("paid_helpers", "vouches_for_access", default=DEFAULT_VOUCHES_FOR_ACCESS))

    @property
    def min_weekly_vouches(self) -> int:
        return int(self.get("helpers", "min_weekly_vouches", default=DEFAULT_MIN_WEEKLY_VOUCHES))

    def free_carry_games(self) -> dict:
        games = self.get("free_carries", "games")
        if games is None:
            return copy.deepcopy(DEFAULT_FREE_CARRIES)
        return games

    def free_carry_limit(self, game: str, gamemode: str) -> int:
        """Daily limit for a gamemode, 0 when free carries are not offered."""
        game_cfg = self.free_carry_games().get(game)
        if not game_cfg:
            return 0
        return int((game_cfg.get("limits") or {}).get(gamemode, 0) or 0)

    def gamemode_limits(self, game: str) -> dict[str, int] | None:
        game_cfg = self.free_carry_games().get(game)
        return dict(game_cfg.get("limits") or {}) if game_cfg else None

    def game_display_name(self, game: str) -> str:
        game_cfg = self.free_carry_games().get(game)
        return game_cfg.get("display_name", game) if game_cfg else game
