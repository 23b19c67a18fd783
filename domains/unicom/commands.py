"""Command handlers for the China Unicom usage bot.

Provides:
- register - Store credentials and start the polling task
- deregister - Stop the task and delete all stored data
- config show / config set - View or change settings
- query - One-off usage report
- task start / stop / status - Control the polling task

Handlers return the reply text; the chat layer only sends it. Interactive
prompts go through an ``ask`` coroutine that sends a prompt and returns the
user's next message, raising ``asyncio.TimeoutError`` if none arrives.
"""

import asyncio
from typing import Awaitable, Callable, Optional

from logger import logger
from utils.log_sanitizer import sanitize_log
from . import config
from .engine import query_once
from .errors import AlreadyExistsError, NotRegisteredError, UnicomError, ValidationError
from .models import UserConfig
from .scheduler import TaskScheduler, TaskStatus
from .store import SnapshotStore

Ask = Callable[[str], Awaitable[str]]

NOT_REGISTERED = "You have not registered yet, please use `/unicom register` to register first."
TIMED_OUT = "No reply received in time, operation cancelled."

CONFIG_SET_MENU = (
    "Please send an option number to set:\n"
    "1. cookie: text\n"
    "2. interval: seconds\n"
    "3. timeout: seconds or none\n"
    "4. free_threshold: GB or none\n"
    "5. nonfree_threshold: GB or none\n"
    "\n"
    "Send 0 to cancel"
)

# option number -> (field, prompt, parser)
CONFIG_OPTIONS = {
    1: ("cookie", "Please send your new China Unicom Cookie.", lambda text: text.strip()),
    2: ("interval", "Please send the interval in seconds.", lambda text: int(text.strip())),
    3: ("timeout", "Please send the timeout in seconds, or 'none'.", lambda text: parse_optional(text, int)),
    4: ("free_threshold", "Please send the free threshold in GB, or 'none'.",
        lambda text: parse_optional(text, float)),
    5: ("nonfree_threshold", "Please send the nonfree threshold in GB, or 'none'.",
        lambda text: parse_optional(text, float)),
}


def parse_optional(text: str, cast: Callable):
    """Parse an optional value where none/null/no/n means "unset".

    Raises:
        ValueError: If the text is neither a none word nor a valid ``cast`` value
    """
    value = text.strip()
    if value.lower() in config.NONE_WORDS:
        return None
    return cast(value)


def parse_confirmation(text: str) -> bool:
    return text.strip().lower() in ("y", "yes")


def _error(action: str, e: Exception) -> str:
    return f"An error occurred while {action}: {sanitize_log(str(e))}"


class UnicomCommands:
    """Chat commands backed by the store, source and scheduler."""

    def __init__(self, store: SnapshotStore, scheduler: TaskScheduler):
        self.store = store
        self.scheduler = scheduler

    @property
    def source(self):
        return self.scheduler.source

    async def register(self, user: str, bot: str, ask: Ask) -> str:
        """Ask for credentials one at a time, store them and start the task.

        Args:
            user: Requesting user key
            bot: Key of the bot that received the command
            ask: Prompt coroutine

        Returns:
            Reply message
        """
        if self.store.find_config(user) is not None:
            return "You have already registered, to update your cookie use `/unicom config-set`."

        try:
            cookie = (await ask("Please send your China Unicom Cookie in 30s.")).strip()
            app_id = (await ask("Please send your China Unicom AppId in 30s.")).strip()
            token_online = (await ask("Please send your China Unicom TokenOnline in 30s.")).strip()
        except asyncio.TimeoutError:
            return TIMED_OUT

        user_config = UserConfig(
            user=user,
            bot=bot,
            cookie=cookie,
            token_online=token_online,
            app_id=app_id,
        )

        try:
            self.store.insert_config(user_config)
        except AlreadyExistsError:
            return "You have already registered, to update your cookie use `/unicom config-set`."
        except UnicomError as e:
            logger.error(f"Register failed for {user}: {e}")
            return _error("registering", e)

        logger.info(f"Registered user: {user}")
        reply = (
            "Register success, your task will be started automatically. "
            "Use `/unicom task` to view or control it."
        )
        return f"{reply}\n{await self.task_start(user)}"

    async def deregister(self, user: str, ask: Ask) -> str:
        """Confirm, then stop the task and delete every record for the user."""
        if self.store.find_config(user) is None:
            return "You have not registered yet."

        try:
            answer = await ask(
                "Are you sure you want to cancel the China Unicom service?\n"
                "This will stop notifications and delete all your data.\n"
                "Send 'y' to confirm, 'n' to cancel."
            )
        except asyncio.TimeoutError:
            return TIMED_OUT

        if not parse_confirmation(answer):
            return "Deregister cancelled."

        try:
            await self.scheduler.stop(user)
        except NotRegisteredError:
            pass

        try:
            removed = self.store.delete_config(user)
        except UnicomError as e:
            logger.error(f"Deregister failed for {user}: {e}")
            return _error("deregistering", e)

        if not removed:
            return "You have not registered yet."

        logger.info(f"Deregistered user: {user}")
        return "Deregister success."

    def show_config(self, user: str) -> str:
        user_config = self.store.find_config(user)
        if user_config is None:
            return NOT_REGISTERED
        return str(user_config)

    async def set_config(self, user: str, ask: Ask) -> str:
        """Change one setting chosen from a numbered menu, then restart the task.

        The option number is asked up to three times; the value once.
        """
        user_config = self.store.find_config(user)
        if user_config is None:
            return NOT_REGISTERED

        try:
            option = await self._ask_option(ask)
            if option is None:
                return "Invalid option number, exited."
            if option == 0:
                return "Config set operation cancelled."

            field_name, prompt, parse = CONFIG_OPTIONS[option]
            answer = await ask(prompt)
        except asyncio.TimeoutError:
            return TIMED_OUT

        try:
            value = parse(answer)
        except ValueError:
            return f"Invalid value for {field_name}, nothing changed."

        try:
            updated = user_config.with_changes(**{field_name: value})
            self.store.update_config(updated)
        except ValidationError as e:
            return f"Invalid value: {e}"
        except UnicomError as e:
            logger.error(f"Config update failed for {user}: {e}")
            return _error("updating", e)

        logger.info(f"Updated {field_name} for user: {user}")

        try:
            status = await self.scheduler.restart(user)
        except Exception as e:
            logger.error(f"Task restart failed for {user}: {e}")
            return f"Update success.\n{_error('restarting the task', e)}"

        return f"Update success.\nTask status: {_status_text(status)}"

    async def _ask_option(self, ask: Ask) -> Optional[int]:
        prompt = CONFIG_SET_MENU
        for _ in range(config.OPTION_ATTEMPTS):
            answer = await ask(prompt)
            try:
                option = int(answer.strip())
            except ValueError:
                prompt = "Please send a number between 0 and 5"
                continue
            if option == 0 or option in CONFIG_OPTIONS:
                return option
            return None
        return None

    async def query(self, user: str) -> str:
        """Run one reconciliation and return the report whether or not it notifies."""
        try:
            _, report = await query_once(self.store, self.source, user)
        except NotRegisteredError:
            return NOT_REGISTERED
        except Exception as e:
            logger.error(f"Query failed for {user}: {e}")
            return _error("querying", e)
        return report

    async def task_start(self, user: str) -> str:
        try:
            started = await self.scheduler.start(user)
        except NotRegisteredError:
            return NOT_REGISTERED
        except Exception as e:
            logger.error(f"Task start failed for {user}: {e}")
            return f"China Unicom: task start failed: {sanitize_log(str(e))}"

        if not started:
            return "China Unicom: task is already running."
        return "China Unicom: task start success."

    async def task_stop(self, user: str) -> str:
        try:
            stopped = await self.scheduler.stop(user)
        except NotRegisteredError:
            return NOT_REGISTERED
        except UnicomError as e:
            logger.error(f"Task stop failed for {user}: {e}")
            return _error("stopping the task", e)

        if not stopped:
            return "China Unicom: task is not running."
        return "China Unicom: task stopped."

    def task_status(self, user: str) -> str:
        if self.store.find_config(user) is None:
            return NOT_REGISTERED
        return f"China Unicom: task is {_status_text(self.scheduler.status(user))}."


def _status_text(status: TaskStatus) -> str:
    return "running" if status is TaskStatus.RUNNING else "not running"
