# -*- coding: utf-8 -*-
"""
Main Class of the WardenBot
"""

import os
from asyncio import run
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from traceback import format_exc, print_exc
from typing import Annotated, Any, Generator, Optional
from warnings import filterwarnings

import typer
import yaml
from discord import ClientException, Intents, LoginFailure
from discord.ext.commands import Bot, ExtensionFailed
from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from utils import logging
from utils.capabilities import DiscordChannels, DiscordMembership, DiscordTranscriptSink
from utils.database import BASE, build_connection_string
from utils.decision import DecisionKind
from utils.error_throttle import ErrorThrottle
from utils.errors import WardenInfraException, WardenStorageError
from utils.helpers import parse_id
from utils.review import DecisionOutcome, apply_decision
from utils.strings import load_strings
from utils.tickets import OpenTicketIndex, TicketManager
from utils.transcript import TranscriptBuffer


class WardenBot(Bot):
    """Discord Bot"""

    def __init__(self, config: dict, intents: Intents, debug: bool):
        super().__init__(
            command_prefix="",
            description="WardenBot - keeps the gate",
            intents=intents,
            help_command=None,
        )

        self.config = config
        self.debug = debug
        self.client_id = parse_id(config["bot"]["client_id"])
        self.token = config["bot"]["token"]
        self.ops = [parse_id(op) for op in config["bot"].get("ops", [])]
        self.modules = config["bot"].get("modules", ["modmail"])
        self.error_recipients = [
            parse_id(r) for r in config.get("notifications", {}).get("error_recipients", [])
        ] or list(self.ops)
        self.restart = True
        self.log = logging.get_logger("warden")
        self.uptime = datetime.now(UTC)

        self.error_throttle = ErrorThrottle()

        # database variables
        db_connection_string = build_connection_string(config)
        if "database" not in config:
            self.log.warning("No Database specified! Fallback to local SQLite Database!")

        self.ENGINE = create_engine(db_connection_string)
        self.SESSION = sessionmaker(bind=self.ENGINE, expire_on_commit=False)

        # collaborators of the review and modmail flows
        self.membership = DiscordMembership(self)
        self.ticket_index = OpenTicketIndex()
        self.transcripts = TranscriptBuffer()
        self.tickets = TicketManager(
            self,
            self.ticket_index,
            self.transcripts,
            DiscordChannels(self),
            DiscordTranscriptSink(self),
        )

    def create_all(self) -> None:
        """creates all tables previously defined"""
        BASE.metadata.create_all(self.ENGINE)

    @contextmanager
    def session_scope(self) -> Generator[Session, Any, None]:
        """Provide a transactional scope around a series of operations.

        Everything inside the block commits together or not at all. Database errors are
        logged with a correlation id and re-raised as :class:`WardenStorageError`.
        """
        session = self.SESSION()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            error = WardenStorageError()
            self.log.error(f"database error [{error.correlation_id}]: {exc}")
            raise error from exc
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()

    async def review(
        self,
        guild_id: int,
        guild_name: str,
        application_id: str,
        moderator_id: int,
        kind: DecisionKind,
        reason: str | None = None,
    ) -> DecisionOutcome:
        """Record a moderator's decision and carry it out through the bot's gateways"""
        return await apply_decision(
            self, self.membership, self.tickets, guild_id, guild_name, application_id, moderator_id, kind, reason
        )

    async def setup_hook(self) -> None:

        """
        Discord Bot setup_hook
        Loads Modules, creates Databases and hydrates open tickets before the gateway connects
        """
        for module in self.modules:
            try:
                await self.load_extension(f"modules.{module}")
            except (ImportError, ExtensionFailed, ClientException) as e:
                self.log.error(f"failed to load extension {module}. {e}")
                self.log.debug(print_exc())

        load_strings()
        self.create_all()

        # no message may be routed before the index knows every open ticket
        self.tickets.hydrate()

    async def on_ready(self) -> None:
        """calls when successfully logged in"""
        self.log.info(f"Logged in as {self.user} (ID: {self.user.id})")

    async def start(self, token: str = None, reconnect: bool = True) -> None:
        """
        connects the discord bot to the server

        :param token: str
        :param reconnect: bool
        """
        self.log.info("Logging into Discord...")
        if self.token:
            await self.login(self.token)
        else:
            self.log.critical("No credentials available to login.")
            raise RuntimeError()
        await self.connect(reconnect=self.restart)

    async def shutdown(self) -> None:
        """
        shutting down discord nicely
        """
        self.log.info("shutting down server!")
        self.restart = False
        self.tickets.teardown()
        await self.close()


def get_intents() -> Intents:
    intents = Intents.default()
    intents.members = True
    intents.message_content = True
    return intents


def _csv(value: str) -> list[str]:
    return [x.strip() for x in value.split(",") if x.strip()]


def _set_nested(d: dict, keys: list[str], value) -> None:
    for key in keys[:-1]:
        d = d.setdefault(key, {})
    d[keys[-1]] = value


def parse_env_config() -> dict:
    """Read WARDEN_* environment variables and return a config dict."""
    env: dict = {}
    mappings = [
        ("WARDEN_TOKEN", ["bot", "token"], str),
        ("WARDEN_CLIENT_ID", ["bot", "client_id"], str),
        ("WARDEN_OPS", ["bot", "ops"], _csv),
        ("WARDEN_MODULES", ["bot", "modules"], _csv),
        ("WARDEN_DB_TYPE", ["database", "db_type"], str),
        ("WARDEN_DB_NAME", ["database", "db_name"], str),
        ("WARDEN_DB_USERNAME", ["database", "db_username"], str),
        ("WARDEN_DB_PASSWORD", ["database", "db_password"], str),
        ("WARDEN_DB_HOST", ["database", "db_host"], str),
        ("WARDEN_DB_PORT", ["database", "db_port"], str),
        ("WARDEN_ERROR_RECIPIENTS", ["notifications", "error_recipients"], _csv),
    ]
    for var_name, keys, converter in mappings:
        value = os.environ.get(var_name)
        if value:
            _set_nested(env, keys, converter(value))
    return env


def deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into base; override wins on conflicts."""
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def parse_config(config_path: Optional[Path] = None) -> dict:
    config = {}
    path = config_path or Path("./config.yaml")
    if path.exists():
        with open(path) as stream:
            try:
                config = yaml.safe_load(stream) or {}
            except yaml.YAMLError as exc:
                print(f"Error in configuration file: {exc}")
    return deep_merge(config, parse_env_config())


app = typer.Typer(add_completion=False)


@app.command()
def main(
    config: Annotated[Optional[Path], typer.Option("--config", "-c", help="Config file path")] = None,
    debug: Annotated[bool, typer.Option("--debug", "-d", help="Enable debug logging")] = False,
    loglevel: Annotated[str, typer.Option("--loglevel", "-l", help="Log level (DEBUG, INFO, WARNING, ERROR)")] = "INFO",
    verbosity: Annotated[
        int, typer.Option("--verbosity", "-v", help="Verbosity: 1=DEBUG, 2=+discord, 3=+sqlalchemy")
    ] = 0,
) -> None:
    """WardenBot, application review and modmail for Discord communities."""
    filterwarnings("ignore", category=DeprecationWarning, module=r"discord\.http")

    resolved_config = parse_config(config)
    intents = get_intents()

    is_debug = debug or str(loglevel).upper() == "DEBUG" or verbosity > 0
    loggers = ["warden"]
    if verbosity >= 2:
        loggers.append("discord")
    if verbosity >= 3:
        loggers.append("sqlalchemy.engine")

    if "bot" not in resolved_config:
        raise WardenInfraException("Bot config not found.")

    resolved_loglevel = "DEBUG" if (debug or verbosity > 0) else loglevel
    for logger_name in loggers:
        logging.create_logger(resolved_loglevel, logger_name)
    bot = WardenBot(resolved_config, intents, is_debug)

    try:
        run(bot.start())
    except LoginFailure:
        bot.log.error(format_exc())
        bot.log.error("Failed to login")
    except KeyboardInterrupt:
        bot.log.info("Received KeyboardInterrupt, shutting down.")


if __name__ == "__main__":
    app()
