from __future__ import annotations

import argparse
import asyncio
import logging
import os
import re
from pathlib import Path
from typing import Iterable, Optional

import discord
from discord import app_commands
from discord.ext import commands

from .config import Config, ConfigError, LoggingConfig, load_config
from .discord_port import DiscordMessaging
from .engine import GiveawayEngine, now_ms
from .errors import ChannelUnavailable, NotFound, PersistenceFailure
from .events import (
    EventKind,
    GiveawayEdited,
    GiveawayEnded,
    GiveawayRerolled,
    GiveawayStarted,
)
from .models import EditSpec, GiveawaySpec, RequirementSet
from .storage import build_store

log = logging.getLogger(__name__)
PERMISSION_LOG = logging.getLogger("giveaway.permissions")
ENV_PATH = Path(".env")
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DAY_MS = 24 * 60 * 60 * 1000

DURATION_PART_RE = re.compile(r"(\d+)\s*([smhdw])", re.IGNORECASE)
DURATION_UNITS_MS = {
    "s": 1000,
    "m": 60 * 1000,
    "h": 60 * 60 * 1000,
    "d": DAY_MS,
    "w": 7 * DAY_MS,
}


def _load_env_file(path: Path = ENV_PATH) -> None:
    """Export ``KEY=value`` lines from ``path`` without overriding the real environment."""
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except OSError:
        return
    for line in lines:
        entry = line.strip()
        if entry.startswith("#") or "=" not in entry:
            continue
        name, _, raw_value = entry.partition("=")
        name = name.strip()
        raw_value = raw_value.strip()
        if len(raw_value) >= 2 and raw_value[0] == raw_value[-1] and raw_value[0] in "'\"":
            raw_value = raw_value[1:-1]
        if name:
            os.environ.setdefault(name, raw_value)


def parse_duration(value: str) -> int:
    """Parse durations such as ``90s``, ``10m``, ``1h30m`` or ``2d`` into milliseconds."""
    compact = value.strip().replace(" ", "")
    if not compact:
        raise ValueError("Duration must not be empty.")
    total = 0
    position = 0
    for match in DURATION_PART_RE.finditer(compact):
        if match.start() != position:
            break
        total += int(match.group(1)) * DURATION_UNITS_MS[match.group(2).lower()]
        position = match.end()
    if position != len(compact) or total <= 0:
        raise ValueError(
            "Duration must look like 30s, 10m, 2h, 1d or a combination such as 1h30m."
        )
    return total


def configure_logging(settings: LoggingConfig) -> None:
    formatter = logging.Formatter(LOG_FORMAT)
    handlers: list[logging.Handler] = []

    console = logging.StreamHandler()
    console.setLevel(settings.level)
    handlers.append(console)

    if settings.file is not None:
        settings.file.parent.mkdir(parents=True, exist_ok=True)
        log_file = logging.FileHandler(settings.file, encoding="utf-8")
        log_file.setLevel(logging.DEBUG)
        handlers.append(log_file)

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.setLevel(logging.DEBUG)
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)
    # discord.py's gateway chatter stays at INFO even when the file handler is DEBUG.
    logging.getLogger("discord").setLevel(logging.INFO)


class GiveawayBot(commands.Bot):
    def __init__(self, config: Config) -> None:
        intents = discord.Intents.default()

        super().__init__(
            command_prefix=commands.when_mentioned,
            intents=intents,
            application_id=config.application_id,
        )
        self.config = config
        self.engine = GiveawayEngine(
            DiscordMessaging(self),
            build_store(config.storage.backend, config.storage.path),
            config.giveaways.engine_options(),
        )
        for kind in (EventKind.STARTED, EventKind.ENDED, EventKind.REROLLED, EventKind.EDITED):
            self.engine.events.subscribe(kind, self._notify_logger)

    async def setup_hook(self) -> None:
        await self.engine.restore()
        dev_guild_id = self.config.permissions.development_guild_id
        if dev_guild_id is None:
            await self.tree.sync()
            return
        guild = discord.Object(id=dev_guild_id)
        self.tree.copy_global_to(guild=guild)
        await self.tree.sync(guild=guild)

    async def close(self) -> None:
        await self.engine.close()
        await super().close()

    async def on_ready(self) -> None:
        active = await self.engine.list_giveaways(active_only=True)
        log.info("Logged in as %s; %d giveaway(s) active.", self.user, len(active))

    async def _notify_logger(self, event) -> None:
        channel_id = self.config.logging.logger_channel_id
        if not channel_id:
            return
        giveaway = event.giveaway
        if isinstance(event, GiveawayStarted):
            message = (
                f"Giveaway **{giveaway.prize}** (`{giveaway.id}`) started in <#{giveaway.channel_id}>."
            )
        elif isinstance(event, (GiveawayEnded, GiveawayRerolled)):
            verb = "rerolled" if isinstance(event, GiveawayRerolled) else "finished"
            if event.winners:
                mentions = ", ".join(f"<@{winner_id}>" for winner_id in event.winners)
                message = (
                    f"Giveaway **{giveaway.prize}** (`{giveaway.id}`) {verb} with "
                    f"{len(event.winners)} winner(s): {mentions}."
                )
            else:
                message = f"Giveaway **{giveaway.prize}** (`{giveaway.id}`) {verb} with no winners."
        elif isinstance(event, GiveawayEdited):
            message = f"Giveaway `{giveaway.id}` updated."
        else:
            return
        channel = self.get_channel(channel_id)
        if not isinstance(channel, discord.TextChannel):
            return
        try:
            await channel.send(f"[Giveaway] {message}")
        except discord.HTTPException as exc:
            log.warning(
                "Failed to send log message to %s: %s", channel_id, exc
            )


def is_admin(
    member: discord.Member,
    admin_roles: Iterable[int],
    *,
    base_permissions: Optional[discord.Permissions] = None,
) -> bool:
    guild = getattr(member, "guild", None)
    if guild is not None and getattr(guild, "owner_id", None) == member.id:
        PERMISSION_LOG.debug("Member %s is guild owner; treating as giveaway admin.", member.id)
        return True

    permissions_obj = base_permissions
    if permissions_obj is None:
        permissions_obj = getattr(member, "guild_permissions", None)
    if permissions_obj is not None and (
        permissions_obj.administrator or permissions_obj.manage_guild
    ):
        PERMISSION_LOG.debug(
            "Member %s has administrative permissions; treating as giveaway admin.",
            member.id,
        )
        return True

    configured = {int(role_id) for role_id in admin_roles}
    member_roles = {role.id for role in getattr(member, "roles", ())}
    matching_roles = sorted(configured.intersection(member_roles))
    if matching_roles:
        PERMISSION_LOG.debug(
            "Member %s matched giveaway admin role(s) %s.", member.id, matching_roles
        )
        return True

    PERMISSION_LOG.debug(
        "Member %s lacks required giveaway admin roles %s (has %s).",
        member.id,
        sorted(configured),
        sorted(member_roles),
    )
    return False


async def admin_required(interaction: discord.Interaction, bot: GiveawayBot) -> Optional[str]:
    command_name = getattr(getattr(interaction, "command", None), "name", "unknown")
    user = interaction.user

    if interaction.guild is None or not isinstance(user, discord.Member):
        PERMISSION_LOG.debug(
            "Denied command %s for user %s: non-guild context.", command_name, user.id
        )
        return "This command can only be used inside a guild."

    if not is_admin(
        user,
        bot.config.permissions.admin_roles,
        base_permissions=getattr(interaction, "permissions", None),
    ):
        PERMISSION_LOG.warning(
            "Denied command %s for user %s: missing giveaway admin rights.",
            command_name,
            user.id,
        )
        return "You do not have permission to manage giveaways."

    PERMISSION_LOG.debug("Authorized command %s for user %s.", command_name, user.id)
    return None


def build_bot(config_path: Path) -> GiveawayBot:
    _load_env_file()
    config = load_config(config_path)
    configure_logging(config.logging)
    return GiveawayBot(config)


def register_commands(bot: GiveawayBot) -> None:
    engine = bot.engine

    @bot.tree.command(name="giveaway-start", description="Start a reaction giveaway.")
    @app_commands.describe(
        channel="Channel where the giveaway should be posted.",
        prize="Prize shown on the giveaway.",
        winners="Number of winners to draw.",
        duration="How long the giveaway runs, e.g. 30m, 2h, 1d or 1h30m.",
        required_role="Role entrants must have.",
        account_age_days="Minimum account age in days.",
        member_days="Minimum server membership in days.",
    )
    async def giveaway_start(
        interaction: discord.Interaction,
        channel: discord.TextChannel,
        prize: str,
        winners: app_commands.Range[int, 1, 100],
        duration: str,
        required_role: Optional[discord.Role] = None,
        account_age_days: Optional[app_commands.Range[int, 1, 3650]] = None,
        member_days: Optional[app_commands.Range[int, 1, 3650]] = None,
    ) -> None:
        error = await admin_required(interaction, bot)
        if error:
            await interaction.response.send_message(error, ephemeral=True)
            return

        try:
            duration_ms = parse_duration(duration)
        except ValueError as exc:
            await interaction.response.send_message(str(exc), ephemeral=True)
            return

        now = now_ms()
        requirements = RequirementSet(
            required_roles=frozenset({str(required_role.id)}) if required_role else frozenset(),
            account_age_min=now - account_age_days * DAY_MS if account_age_days else None,
            joined_server_before=now - member_days * DAY_MS if member_days else None,
        )

        await interaction.response.defer(ephemeral=True)
        try:
            giveaway = await engine.start(
                GiveawaySpec(
                    channel_id=str(channel.id),
                    prize=prize,
                    winner_count=winners,
                    duration=duration_ms,
                    requirements=requirements,
                )
            )
        except ChannelUnavailable:
            await interaction.followup.send(
                f"I cannot post giveaways in {channel.mention}.", ephemeral=True
            )
            return
        except (discord.HTTPException, PersistenceFailure) as exc:
            log.exception("Failed to start giveaway")
            await interaction.followup.send(
                f"Starting the giveaway failed: {exc}", ephemeral=True
            )
            return
        await interaction.followup.send(
            f"Giveaway `{giveaway.id}` started in {channel.mention} and ends "
            f"<t:{giveaway.end_at // 1000}:R>.",
            ephemeral=True,
        )

    @bot.tree.command(name="giveaway-end", description="End a giveaway immediately.")
    @app_commands.describe(giveaway_id="Identifier of the giveaway to end.")
    async def giveaway_end(interaction: discord.Interaction, giveaway_id: str) -> None:
        error = await admin_required(interaction, bot)
        if error:
            await interaction.response.send_message(error, ephemeral=True)
            return

        await interaction.response.defer(ephemeral=True)
        try:
            winners = await engine.end(giveaway_id)
        except (discord.HTTPException, PersistenceFailure) as exc:
            log.exception("Failed to end giveaway %s", giveaway_id)
            await interaction.followup.send(f"Ending the giveaway failed: {exc}", ephemeral=True)
            return
        if winners is None:
            await interaction.followup.send(
                "Giveaway not found or already ended.", ephemeral=True
            )
            return
        await interaction.followup.send(
            f"Giveaway `{giveaway_id}` ended with {len(winners)} winner(s).", ephemeral=True
        )

    @bot.tree.command(name="giveaway-reroll", description="Draw new winners for a giveaway.")
    @app_commands.describe(giveaway_id="Identifier of the giveaway to reroll.")
    async def giveaway_reroll(interaction: discord.Interaction, giveaway_id: str) -> None:
        error = await admin_required(interaction, bot)
        if error:
            await interaction.response.send_message(error, ephemeral=True)
            return

        await interaction.response.defer(ephemeral=True)
        try:
            winners = await engine.reroll(giveaway_id)
        except (discord.HTTPException, PersistenceFailure) as exc:
            log.exception("Failed to reroll giveaway %s", giveaway_id)
            await interaction.followup.send(f"Rerolling the giveaway failed: {exc}", ephemeral=True)
            return
        if winners is None:
            await interaction.followup.send("Giveaway not found.", ephemeral=True)
            return
        if not winners:
            await interaction.followup.send(
                "No participants available to reroll.", ephemeral=True
            )
            return
        mentions = " ".join(f"<@{wid}>" for wid in winners)
        await interaction.followup.send(
            f"Rerolled giveaway `{giveaway_id}`: {mentions}", ephemeral=True
        )

    @bot.tree.command(name="giveaway-edit", description="Edit an active giveaway.")
    @app_commands.describe(
        giveaway_id="Identifier of the giveaway to edit.",
        prize="Updated prize.",
        winners="New number of winners.",
    )
    async def giveaway_edit(
        interaction: discord.Interaction,
        giveaway_id: str,
        prize: Optional[str] = None,
        winners: Optional[app_commands.Range[int, 1, 100]] = None,
    ) -> None:
        error = await admin_required(interaction, bot)
        if error:
            await interaction.response.send_message(error, ephemeral=True)
            return
        if prize is None and winners is None:
            await interaction.response.send_message(
                "Provide at least one field to update.", ephemeral=True
            )
            return

        await interaction.response.defer(ephemeral=True)
        try:
            await engine.edit(giveaway_id, EditSpec(prize=prize, winner_count=winners))
        except NotFound:
            await interaction.followup.send(
                "Giveaway not found or already ended.", ephemeral=True
            )
            return
        except (discord.HTTPException, PersistenceFailure) as exc:
            log.exception("Failed to edit giveaway %s", giveaway_id)
            await interaction.followup.send(f"Editing the giveaway failed: {exc}", ephemeral=True)
            return
        await interaction.followup.send(f"Giveaway `{giveaway_id}` updated.", ephemeral=True)

    @bot.tree.command(name="giveaway-delete", description="Delete a giveaway record.")
    @app_commands.describe(giveaway_id="Identifier of the giveaway to delete.")
    async def giveaway_delete(interaction: discord.Interaction, giveaway_id: str) -> None:
        error = await admin_required(interaction, bot)
        if error:
            await interaction.response.send_message(error, ephemeral=True)
            return

        await interaction.response.defer(ephemeral=True)
        try:
            deleted = await engine.delete(giveaway_id)
        except PersistenceFailure as exc:
            log.exception("Failed to delete giveaway %s", giveaway_id)
            await interaction.followup.send(f"Deleting the giveaway failed: {exc}", ephemeral=True)
            return
        if not deleted:
            await interaction.followup.send("Giveaway not found.", ephemeral=True)
            return
        await interaction.followup.send(f"Giveaway `{giveaway_id}` deleted.", ephemeral=True)

    @bot.tree.command(name="giveaway-list", description="List known giveaways.")
    async def giveaway_list(interaction: discord.Interaction) -> None:
        error = await admin_required(interaction, bot)
        if error:
            await interaction.response.send_message(error, ephemeral=True)
            return

        await interaction.response.defer(ephemeral=True)
        giveaways = await engine.list_giveaways()
        if not giveaways:
            await interaction.followup.send("No giveaways found.", ephemeral=True)
            return
        lines = []
        for giveaway in giveaways:
            status = "Finished" if giveaway.ended else "Active"
            lines.append(
                f"`{giveaway.id}` - **{giveaway.prize}** in <#{giveaway.channel_id}> "
                f"({status}, ends <t:{giveaway.end_at // 1000}:R>)"
            )
        await interaction.followup.send("\n".join(lines[:25]), ephemeral=True)


async def main() -> None:
    parser = argparse.ArgumentParser(description="Discord Reaction Giveaway Bot")
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("config") / "config.yaml",
        help="Path to the bot configuration file.",
    )
    args = parser.parse_args()

    try:
        bot = build_bot(args.config)
    except ConfigError as exc:
        raise SystemExit(f"Configuration error: {exc}") from exc

    register_commands(bot)

    async with bot:
        await bot.start(bot.config.token)


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
