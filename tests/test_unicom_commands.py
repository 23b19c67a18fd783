"""Tests for the chat command handlers."""

import asyncio

import pytest

from conftest import BOT, USER, make_reading
from domains.unicom.commands import UnicomCommands, parse_optional
from domains.unicom.errors import TransientFetchError
from domains.unicom.scheduler import TaskScheduler, TaskStatus
from registry import TaskRegistry


class ScriptedAsk:
    """Answers prompts from a script; times out once the script runs out."""

    def __init__(self, *answers):
        self.answers = list(answers)
        self.prompts = []

    async def __call__(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if not self.answers:
            raise asyncio.TimeoutError()
        return self.answers.pop(0)


async def never_wake(seconds):
    await asyncio.Event().wait()


@pytest.fixture
def scheduler(store, source, notifier):
    return TaskScheduler(store, source, notifier, TaskRegistry(), sleep=never_wake)


@pytest.fixture
def commands(store, scheduler):
    return UnicomCommands(store, scheduler)


@pytest.fixture
def idle(registered, user_config):
    """Registered user with the task disabled, so config changes never fetch."""
    registered.update_config(user_config.with_changes(enable_task=False))
    return registered


# =============================================================================
# parse_optional
# =============================================================================

@pytest.mark.parametrize("text", ["none", "NULL", " no ", "n"])
def test_parse_optional_none_words(text):
    assert parse_optional(text, int) is None


def test_parse_optional_value():
    assert parse_optional(" 0.25 ", float) == 0.25


def test_parse_optional_invalid():
    with pytest.raises(ValueError):
        parse_optional("lots", float)


# =============================================================================
# register / deregister
# =============================================================================

@pytest.mark.asyncio
async def test_register_stores_config_and_starts_task(commands, store, source, scheduler):
    source.results = [make_reading()]
    ask = ScriptedAsk("ecs_token=abc", "app-1", "token-1")

    reply = await commands.register(USER, BOT, ask)

    assert "Register success" in reply
    assert "task start success" in reply
    assert len(ask.prompts) == 3
    cfg = store.find_config(USER)
    assert (cfg.cookie, cfg.app_id, cfg.token_online) == ("ecs_token=abc", "app-1", "token-1")
    assert scheduler.status(USER) is TaskStatus.RUNNING
    await scheduler.shutdown()


@pytest.mark.asyncio
async def test_register_timeout_commits_nothing(commands, store):
    reply = await commands.register(USER, BOT, ScriptedAsk("ecs_token=abc"))

    assert "cancelled" in reply
    assert store.find_config(USER) is None


@pytest.mark.asyncio
async def test_register_twice(commands, registered):
    ask = ScriptedAsk()
    reply = await commands.register(USER, BOT, ask)

    assert "already registered" in reply
    assert ask.prompts == []


@pytest.mark.asyncio
async def test_deregister_deletes_everything(commands, registered, source, scheduler):
    source.results = [make_reading()]
    await scheduler.start(USER)

    reply = await commands.deregister(USER, ScriptedAsk("y"))

    assert reply == "Deregister success."
    assert registered.find_config(USER) is None
    assert registered.find_last(USER) is None
    assert registered.find_daily(USER) is None
    assert scheduler.status(USER) is TaskStatus.NOT_RUNNING


@pytest.mark.asyncio
async def test_deregister_declined(commands, registered):
    reply = await commands.deregister(USER, ScriptedAsk("n"))

    assert reply == "Deregister cancelled."
    assert registered.find_config(USER) is not None


@pytest.mark.asyncio
async def test_deregister_not_registered(commands):
    assert await commands.deregister(USER, ScriptedAsk("y")) == "You have not registered yet."


# =============================================================================
# config
# =============================================================================

def test_show_config_masks_credentials(commands, registered):
    registered.update_config(registered.find_config(USER).with_changes(cookie="ecs_token=supersecretvalue"))

    reply = commands.show_config(USER)

    assert "supersecretvalue" not in reply
    assert "Interval: 60s" in reply
    assert "Nonfree threshold: 0.05 GB" in reply


def test_show_config_not_registered(commands):
    assert "not registered" in commands.show_config(USER)


@pytest.mark.asyncio
async def test_set_interval_restarts_task(commands, registered, source, scheduler):
    source.results = [make_reading(), make_reading(minutes=1)]
    await scheduler.start(USER)
    old = scheduler.registry.get(USER)

    reply = await commands.set_config(USER, ScriptedAsk("2", "300"))

    assert "Update success" in reply
    assert reply.endswith("Task status: running")
    assert registered.find_config(USER).interval == 300
    assert scheduler.registry.get(USER) is not old
    await scheduler.shutdown()


@pytest.mark.asyncio
async def test_set_optional_field_to_none(commands, idle):
    reply = await commands.set_config(USER, ScriptedAsk("3", "none"))

    assert reply == "Update success.\nTask status: not running"
    assert idle.find_config(USER).timeout is None


@pytest.mark.asyncio
async def test_set_threshold(commands, idle):
    await commands.set_config(USER, ScriptedAsk("4", "1.5"))
    assert idle.find_config(USER).free_threshold == 1.5


@pytest.mark.asyncio
async def test_set_rejects_interval_below_minimum(commands, registered):
    reply = await commands.set_config(USER, ScriptedAsk("2", "30"))

    assert reply.startswith("Invalid value")
    assert registered.find_config(USER).interval == 60


@pytest.mark.asyncio
async def test_set_rejects_huge_timeout(commands, registered, source):
    reply = await commands.set_config(USER, ScriptedAsk("3", "100000000000000"))

    assert reply.startswith("Invalid value")
    assert registered.find_config(USER).timeout == 1800

    # reconciliation against a prior snapshot keeps working
    source.results = [make_reading(), make_reading(minutes=1)]
    await commands.query(USER)
    assert (await commands.query(USER)).startswith("Test Plan 39:")


@pytest.mark.asyncio
@pytest.mark.parametrize("answer", ["nan", "inf", "-inf"])
async def test_set_rejects_non_finite_threshold(commands, registered, answer):
    reply = await commands.set_config(USER, ScriptedAsk("5", answer))

    assert reply.startswith("Invalid value")
    assert registered.find_config(USER).nonfree_threshold == 0.05


@pytest.mark.asyncio
async def test_set_rejects_unparseable_value(commands, registered):
    reply = await commands.set_config(USER, ScriptedAsk("5", "lots"))

    assert "nothing changed" in reply
    assert registered.find_config(USER).nonfree_threshold == 0.05


@pytest.mark.asyncio
async def test_option_number_retried(commands, idle):
    ask = ScriptedAsk("abc", "xyz", "4", "0.5")

    reply = await commands.set_config(USER, ask)

    assert "Update success" in reply
    assert ask.prompts[1] == "Please send a number between 0 and 5"
    assert idle.find_config(USER).free_threshold == 0.5


@pytest.mark.asyncio
async def test_option_attempts_exhausted(commands, registered):
    reply = await commands.set_config(USER, ScriptedAsk("a", "b", "c"))
    assert reply == "Invalid option number, exited."


@pytest.mark.asyncio
async def test_option_zero_cancels(commands, registered):
    reply = await commands.set_config(USER, ScriptedAsk("0"))
    assert reply == "Config set operation cancelled."


@pytest.mark.asyncio
async def test_out_of_range_option(commands, registered):
    reply = await commands.set_config(USER, ScriptedAsk("9"))
    assert reply == "Invalid option number, exited."


@pytest.mark.asyncio
async def test_set_config_timeout(commands, registered):
    reply = await commands.set_config(USER, ScriptedAsk("1"))

    assert "cancelled" in reply
    assert registered.find_config(USER).cookie == "old=1"


# =============================================================================
# query / task
# =============================================================================

@pytest.mark.asyncio
async def test_query_returns_report_even_without_notification(commands, registered, source):
    source.results = [make_reading(), make_reading(minutes=1)]

    await commands.query(USER)
    reply = await commands.query(USER)

    assert reply.startswith("Test Plan 39:")


@pytest.mark.asyncio
async def test_query_error_is_sanitized(commands, registered, source):
    source.results = [TransientFetchError("rejected cookie ecs_token=topsecret")]

    reply = await commands.query(USER)

    assert reply.startswith("An error occurred while querying")
    assert "topsecret" not in reply


@pytest.mark.asyncio
async def test_query_not_registered(commands):
    assert "not registered" in await commands.query(USER)


@pytest.mark.asyncio
async def test_task_commands(commands, registered, source, scheduler):
    source.results = [make_reading()]

    assert await commands.task_start(USER) == "China Unicom: task start success."
    assert await commands.task_start(USER) == "China Unicom: task is already running."
    assert commands.task_status(USER) == "China Unicom: task is running."
    assert await commands.task_stop(USER) == "China Unicom: task stopped."
    assert await commands.task_stop(USER) == "China Unicom: task is not running."
    assert commands.task_status(USER) == "China Unicom: task is not running."


@pytest.mark.asyncio
async def test_task_start_failure_is_reported(commands, registered, source):
    source.results = [TransientFetchError("vendor down")]

    reply = await commands.task_start(USER)

    assert reply == "China Unicom: task start failed: vendor down"
