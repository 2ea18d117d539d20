"""
Activity Tracker

Counts each member's messages per day. The daily count gates free carry
eligibility (see QuotaTracker.check_and_reserve).
- Bots and DMs are ignored
- If channels.chat is configured, only that channel counts
"""

from __future__ import annotations
import discord
from discord.ext import commands


class ActivityTracker(commands.Cog):
    def __init__(self, bot: commands.Bot):
        self.bot = bot
        self.store = bot.store
        self.chat_channel_id = int(bot.cfg.get("channels", "chat", default=0) or 0)

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message):
        if message.author.bot:
            return
        if not message.guild:
            return
        if self.chat_channel_id and message.channel.id != self.chat_channel_id:
            return

        await self.store.increment_user_messages(str(message.author.id), str(message.author))


async def setup(bot: commands.Bot):
    await bot.add_cog(ActivityTracker(bot))
