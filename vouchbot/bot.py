from __future__ import annotations

import asyncio
import logging
import os
import sys

import discord
from discord.ext import commands

from vouchbot.core.config import Config
from vouchbot.core.db import Database
from vouchbot.core.cache import QueryCache
from vouchbot.core.store import VouchStore
from vouchbot.core.supervisor import ConnectionSupervisor

log = logging.getLogger("vouchbot")

BOT_DIR = os.path.dirname(os.path.abspath(__file__))

COGS = [
    "vouchbot.cogs.activity",   # Daily message counts for free carry eligibility
]

DEFAULT_CONFIG_TEMPLATE = """token: "{token}"

database:
  path: "vouchbot.sqlite3"

cache:
  ttl_seconds: 60

supervisor:
  interval_seconds: 30

quota:
  timezone: "UTC"

channels:
  chat: 0

free_carries:
  min_messages: 50

paid_helpers:
  vouches_for_access: 10
"""


class VouchBot(commands.Bot):
    def __init__(self, cfg: Config, store: VouchStore):
        intents = discord.Intents.default()
        intents.message_content = True
        intents.members = True

        super().__init__(
            command_prefix=commands.when_mentioned_or("!"),
            intents=intents,
        )
        self.cfg = cfg
        self.store = store
        self.supervisor = ConnectionSupervisor(store, interval=cfg.health_interval)
        self.supervisor.on_connect(lambda: log.info("Store connected (%s)", store.db.path))
        self.supervisor.on_disconnect(lambda: log.info("Store disconnected"))

    async def setup_hook(self):
        """Connect and migrate the store, start its health loop, then load cogs."""
        try:
            await self.supervisor.start()
        except Exception:
            log.exception("Database error during setup")
            raise

        loaded = 0
        for ext in COGS:
            try:
                await self.load_extension(ext)
                loaded += 1
                log.info("Loaded: %s", ext)
            except Exception:
                log.exception("Failed to load %s", ext)
        log.info("Extensions: %d loaded, %d failed", loaded, len(COGS) - loaded)

    async def on_ready(self):
        log.info("Bot is ready! Logged in as %s (ID: %s), %d guild(s)", self.user, self.user.id, len(self.guilds))

    async def on_error(self, event_method: str, *args, **kwargs):
        log.exception("Error in event %s", event_method)

    async def close(self):
        await super().close()
        await self.supervisor.stop()


def build_bot(cfg: Config) -> VouchBot:
    db_path = cfg.db_path
    if not os.path.isabs(db_path):
        db_path = os.path.join(BOT_DIR, db_path)
    store = VouchStore(Database(db_path), QueryCache(ttl=cfg.cache_ttl), cfg)
    return VouchBot(cfg, store)


async def main():
    discord.utils.setup_logging()
    config_path = os.getenv("VOUCHBOT_CONFIG", os.path.join(BOT_DIR, "config.yml"))

    if not os.path.exists(config_path):
        token = os.getenv("DISCORD_BOT_TOKEN")
        if not token:
            log.error("config.yml not found at %s and DISCORD_BOT_TOKEN not set", config_path)
            sys.exit(1)
        with open(config_path, "w", encoding="utf-8") as f:
            f.write(DEFAULT_CONFIG_TEMPLATE.format(token=token))
        log.info("Created config.yml from environment variables at %s", config_path)

    cfg = Config.load(config_path)
    token = cfg.token
    if not token or token == "PUT_YOUR_BOT_TOKEN_HERE":
        log.error("Bot token not configured in %s", config_path)
        sys.exit(1)

    bot = build_bot(cfg)

    # Retry logic for rate limiting
    max_retries = 5
    for attempt in range(max_retries):
        try:
            async with bot:
                await bot.start(token)
            break
        except discord.HTTPException as e:
            if e.status == 429 and attempt < max_retries - 1:
                wait_time = 5 * (2 ** attempt)
                log.warning("Rate limited (429). Waiting %ds before retry (%d/%d)", wait_time, attempt + 1, max_retries)
                await asyncio.sleep(wait_time)
                bot = build_bot(cfg)
                continue
            raise
        except discord.LoginFailure as e:
            log.error("Discord login failure: %s", e)
            sys.exit(1)


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
