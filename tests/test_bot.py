import os

from vouchbot import bot as bot_module
from vouchbot.core import Config


def test_build_bot_wires_store_and_supervisor(tmp_path):
    path = str(tmp_path / "bot.sqlite3")
    cfg = Config({"database": {"path": path}, "cache": {"ttl_seconds": 15}, "supervisor": {"interval_seconds": 45}})

    bot = bot_module.build_bot(cfg)

    assert bot.cfg is cfg
    assert bot.store.db.path == path
    assert bot.store.cache.ttl == 15.0
    assert bot.supervisor.store is bot.store
    assert bot.supervisor.interval == 45.0


def test_relative_database_path_lives_beside_the_package():
    bot = bot_module.build_bot(Config({"database": {"path": "data/test.sqlite3"}}))
    assert bot.store.db.path == os.path.join(bot_module.BOT_DIR, "data/test.sqlite3")


def test_activity_cog_is_registered():
    assert "vouchbot.cogs.activity" in bot_module.COGS
