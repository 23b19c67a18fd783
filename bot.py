"""China Unicom Usage Bot - Main Bot.

A Discord bot that watches China Unicom mobile data usage for registered users
and messages them when consumption crosses their thresholds.
All commands live under the /unicom slash command group and work in DMs only.
"""

import discord
from discord import app_commands
from discord.ext import commands

from logger import logger
from config import DISCORD_TOKEN, UNICOM_DB_PATH
from registry import TaskRegistry
from utils.log_sanitizer import sanitize_log

from domains.unicom import (
    COMMAND_NAME,
    REPLY_TIMEOUT,
    ChinaUnicomSource,
    DiscordNotifier,
    SnapshotStore,
    TaskScheduler,
    UnicomCommands,
    make_key,
)
from domains.unicom.notifier import DISCORD_SERVER


class UnicomBot(commands.Bot):
    """Bot that cancels the polling tasks before disconnecting."""

    async def close(self):
        await scheduler.shutdown()
        store.close()
        await super().close()


# Initialize bot
intents = discord.Intents.default()
intents.message_content = True
bot = UnicomBot(command_prefix="/", intents=intents)

# Initialize China Unicom domain
store = SnapshotStore(UNICOM_DB_PATH)
scheduler = TaskScheduler(
    store=store,
    source=ChinaUnicomSource(),
    notifier=DiscordNotifier(bot),
    registry=TaskRegistry(),
)
unicom = UnicomCommands(store, scheduler)

# on_ready fires again after every reconnect; tasks are started only once
_tasks_started = False


@bot.event
async def on_ready():
    """Called when bot is connected and ready."""
    global _tasks_started
    logger.info(f"Logged in as {bot.user}")

    # Sync slash commands with Discord
    try:
        synced = await bot.tree.sync()
        logger.info(f"Synced {len(synced)} slash commands")
    except Exception as e:
        logger.error(f"Failed to sync slash commands: {e}")

    if _tasks_started:
        return
    _tasks_started = True

    try:
        count = await scheduler.start_all()
        logger.info(f"Bot ready - {count} China Unicom tasks running")
    except Exception as e:
        logger.error(f"Failed to auto start China Unicom tasks: {e}")


def user_key(interaction: discord.Interaction) -> str:
    return make_key(DISCORD_SERVER, interaction.user.id)


def bot_key() -> str:
    return make_key(DISCORD_SERVER, bot.user.id)


async def reply(interaction: discord.Interaction, text: str):
    """Send as the interaction response, or as a followup once responded."""
    if interaction.response.is_done():
        await interaction.followup.send(text)
    else:
        await interaction.response.send_message(text)


def make_ask(interaction: discord.Interaction):
    """Build a prompt coroutine bound to the interaction's DM channel.

    Raises asyncio.TimeoutError when the user does not answer in time.
    """
    async def ask(prompt: str) -> str:
        await reply(interaction, prompt)

        def check(message: discord.Message) -> bool:
            return (
                message.author.id == interaction.user.id
                and message.channel.id == interaction.channel_id
            )

        message = await bot.wait_for("message", check=check, timeout=REPLY_TIMEOUT)
        return message.content

    return ask


async def require_dm(interaction: discord.Interaction) -> bool:
    """Reject commands sent from a server channel."""
    if interaction.guild is None:
        return True
    await interaction.response.send_message(
        "Please use this command in a private message.",
        ephemeral=True
    )
    return False


group = app_commands.Group(name=COMMAND_NAME, description="China Unicom data usage monitor")


@group.command(name="register", description="Register your China Unicom account")
async def cmd_register(interaction: discord.Interaction):
    """Collect cookie, app id and refresh token, then start monitoring."""
    if not await require_dm(interaction):
        return

    try:
        response = await unicom.register(user_key(interaction), bot_key(), make_ask(interaction))
    except Exception as e:
        logger.error(f"Register command failed: {e}")
        response = f"Register failed: {sanitize_log(str(e))}"
    await reply(interaction, response)


@group.command(name="deregister", description="Stop monitoring and delete your data")
async def cmd_deregister(interaction: discord.Interaction):
    if not await require_dm(interaction):
        return

    try:
        response = await unicom.deregister(user_key(interaction), make_ask(interaction))
    except Exception as e:
        logger.error(f"Deregister command failed: {e}")
        response = f"Deregister failed: {sanitize_log(str(e))}"
    await reply(interaction, response)


@group.command(name="config-show", description="Show your settings")
async def cmd_config_show(interaction: discord.Interaction):
    if not await require_dm(interaction):
        return

    await reply(interaction, unicom.show_config(user_key(interaction)))


@group.command(name="config-set", description="Change one of your settings")
async def cmd_config_set(interaction: discord.Interaction):
    if not await require_dm(interaction):
        return

    try:
        response = await unicom.set_config(user_key(interaction), make_ask(interaction))
    except Exception as e:
        logger.error(f"Config set command failed: {e}")
        response = f"Config update failed: {sanitize_log(str(e))}"
    await reply(interaction, response)


@group.command(name="query", description="Query your current data usage")
async def cmd_query(interaction: discord.Interaction):
    """One-off usage report."""
    if not await require_dm(interaction):
        return

    await interaction.response.defer()
    await reply(interaction, await unicom.query(user_key(interaction)))


@group.command(name="task", description="Control the monitoring task")
@app_commands.describe(action="What to do with the task")
@app_commands.choices(action=[
    app_commands.Choice(name="start", value="start"),
    app_commands.Choice(name="stop", value="stop"),
    app_commands.Choice(name="status", value="status"),
])
async def cmd_task(interaction: discord.Interaction, action: app_commands.Choice[str]):
    if not await require_dm(interaction):
        return

    user = user_key(interaction)
    if action.value == "status":
        await reply(interaction, unicom.task_status(user))
        return

    # Starting runs a first query, which can outlast the 3s response window
    await interaction.response.defer()
    if action.value == "start":
        response = await unicom.task_start(user)
    else:
        response = await unicom.task_stop(user)
    await reply(interaction, response)


bot.tree.add_command(group)


@bot.event
async def on_error(event, *args, **kwargs):
    """Handle errors."""
    logger.error(f"Bot error in {event}: {args}")


def main():
    """Entry point."""
    if not DISCORD_TOKEN:
        logger.error("DISCORD_TOKEN not set")
        return

    logger.info("Starting China Unicom usage bot...")
    bot.run(DISCORD_TOKEN)


if __name__ == "__main__":
    main()
