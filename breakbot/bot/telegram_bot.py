"""
Shift Break Bot — Telegram Bot.

Telegram is the only user interface. Workers reserve and take breaks in
their pool's chats; admins manage entitlements and read reports through
/admin. Every command is parsed here, handed to the BreakService, and
the response is rendered back together with any pool notifications.

Chats that are not configured for a community are silently ignored.
"""

from __future__ import annotations

import asyncio
import html
import logging
from functools import wraps
from typing import TYPE_CHECKING, Any, Callable, Coroutine
from zoneinfo import ZoneInfo

from telegram import Update
from telegram.constants import ChatMemberStatus, ParseMode
from telegram.error import TelegramError
from telegram.ext import Application, ApplicationBuilder, CommandHandler, ContextTypes

from breakbot.adapters.telegram_notifier import deliver_notifications, mention_html
from breakbot.config import POOL_KEYS, settings
from breakbot.core.admin_ops import RightKind
from breakbot.core.break_engine import CancelMatch
from breakbot.core.break_service import Actor, BreakService
from breakbot.core.policy import ADMIN_BREAK_DURATIONS, EXTRA_DURATIONS, RESERVATION_DURATIONS
from breakbot.core.reporting import Period, period_range, user_range
from breakbot.core.shift_calendar import detect_shift_from_name, parse_date_input, pool_label

if TYPE_CHECKING:
    from breakbot.config import ChannelContext, CommunityConfig
    from breakbot.core.break_service import ServiceResponse
    from breakbot.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)

BREAK_CHANNEL = "break"
REZ_CHANNEL = "rez"

_GENERIC_FAILURE = "Something went wrong. Please try again."
_NOT_PERSISTED_WARNING = "\n\n⚠️ Storage is unavailable right now; this change is kept in memory only."

_CHANNEL_HINTS = {
    BREAK_CHANNEL: "Use this command in your pool's break channel.",
    REZ_CHANNEL: "Use this command in your pool's reservation channel.",
}


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


class UsageError(Exception):
    """Bad command arguments; the message is shown to the user."""


def parse_duration(args: list[str], index: int, allowed: tuple[int, ...]) -> int:
    choices = "|".join(str(d) for d in allowed)
    try:
        value = int(args[index])
    except (IndexError, ValueError):
        raise UsageError(f"Give a duration: {choices}") from None
    if value not in allowed:
        raise UsageError(f"Invalid duration. Choose {choices}.")
    return value


def parse_cancel_args(args: list[str]) -> tuple[CancelMatch, str | None]:
    """[] -> earliest, ["all"] -> all, ["HH:MM"] -> that time."""
    if not args:
        return CancelMatch.EARLIEST, None
    if args[0].lower() == "all":
        return CancelMatch.ALL, None
    return CancelMatch.TIME, args[0]


def parse_pool(value: str) -> str:
    pool_key = value.lower()
    if pool_key not in POOL_KEYS:
        raise UsageError("Invalid pool. Options: " + ", ".join(POOL_KEYS))
    return pool_key


# ---------------------------------------------------------------------------
# Chat routing
# ---------------------------------------------------------------------------


def channel_command(
    channel_type: str | None,
) -> Callable[[Callable[..., Coroutine[Any, Any, None]]], Callable[..., Coroutine[Any, Any, None]]]:
    """Route a command to the pool of the chat it was sent in.

    Unknown chats are silently ignored. A known chat of the wrong channel
    type gets a hint. The wrapped handler receives the ChannelContext.
    """

    def decorator(
        func: Callable[..., Coroutine[Any, Any, None]],
    ) -> Callable[..., Coroutine[Any, Any, None]]:
        @wraps(func)
        async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
            chat = update.effective_chat
            user = update.effective_user
            if chat is None or user is None or update.message is None:
                return
            channel = settings.channel_context(chat.id)
            if channel is None:
                logger.debug("Ignoring command from unconfigured chat %s", chat.id)
                return
            if channel_type is not None and channel.channel_type != channel_type:
                await update.message.reply_text(_CHANNEL_HINTS[channel_type])
                return
            try:
                await func(update, context, channel)
            except UsageError as exc:
                await update.message.reply_text(str(exc))

        return wrapper

    return decorator


def _actor(update: Update) -> Actor:
    user = update.effective_user
    return Actor(user_id=user.id, display_name=user.full_name)


def _service(context: ContextTypes.DEFAULT_TYPE) -> BreakService:
    return context.bot_data["service"]


async def _respond(
    update: Update,
    context: ContextTypes.DEFAULT_TYPE,
    community: CommunityConfig,
    response: ServiceResponse,
    escape: bool = True,
) -> None:
    """Reply to the command and deliver the response's notifications."""
    text = html.escape(response.message) if escape else response.message
    if response.public:
        text = f"{mention_html(update.effective_user.id, update.effective_user.full_name)}: {text}"
    if not response.persisted:
        text += _NOT_PERSISTED_WARNING
    await update.message.reply_text(text, parse_mode=ParseMode.HTML)

    if response.notifications:
        notifier: NotificationPort = context.bot_data["notifier"]
        await deliver_notifications(notifier, community, response.notifications)


def _community(channel: ChannelContext) -> CommunityConfig:
    return settings.community(channel.community_id)


# ---------------------------------------------------------------------------
# User commands
# ---------------------------------------------------------------------------


async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start and /help."""
    await update.message.reply_text(
        "Shift break bot\n\n"
        "Reservation channel:\n"
        "/reserve <10|20> <HH:MM> [wait] — reserve a break slot\n"
        "/reservations — your reservations and the pool's occupancy\n"
        "/cancelrez [all|HH:MM] — cancel a reservation\n\n"
        "Break channel:\n"
        "/break <10|20> — start your reserved break\n"
        "/emergency <10|20> — start a break without a reservation\n"
        "/extra <5|10|20> — extra break outside your shift\n"
        "/back — end your break\n"
        "/rights — your remaining break rights\n\n"
        "Your shift is read from your name, e.g. \"Alex | 16.00 - 00.00\"."
    )


@channel_command(REZ_CHANNEL)
async def cmd_reserve(
    update: Update, context: ContextTypes.DEFAULT_TYPE, channel: ChannelContext,
) -> None:
    """Handle /reserve <10|20> <HH:MM> [wait]."""
    args = context.args or []
    duration = parse_duration(args, 0, RESERVATION_DURATIONS)
    if len(args) < 2:
        raise UsageError("Usage: /reserve <10|20> <HH:MM> [wait]")
    allow_waitlist = len(args) > 2 and args[2].lower() == "wait"
    response = await _service(context).reserve(
        channel.community_id, channel.pool_key, _actor(update), duration, args[1], allow_waitlist,
    )
    await _respond(update, context, _community(channel), response)


@channel_command(BREAK_CHANNEL)
async def cmd_break(
    update: Update, context: ContextTypes.DEFAULT_TYPE, channel: ChannelContext,
) -> None:
    """Handle /break <10|20>."""
    duration = parse_duration(context.args or [], 0, RESERVATION_DURATIONS)
    response = await _service(context).start_break(
        channel.community_id, channel.pool_key, _actor(update), duration,
    )
    await _respond(update, context, _community(channel), response)


@channel_command(BREAK_CHANNEL)
async def cmd_emergency(
    update: Update, context: ContextTypes.DEFAULT_TYPE, channel: ChannelContext,
) -> None:
    """Handle /emergency <10|20>."""
    duration = parse_duration(context.args or [], 0, RESERVATION_DURATIONS)
    response = await _service(context).start_emergency_break(
        channel.community_id, channel.pool_key, _actor(update), duration,
    )
    await _respond(update, context, _community(channel), response)


@channel_command(BREAK_CHANNEL)
async def cmd_extra(
    update: Update, context: ContextTypes.DEFAULT_TYPE, channel: ChannelContext,
) -> None:
    """Handle /extra <5|10|20>."""
    duration = parse_duration(context.args or [], 0, EXTRA_DURATIONS)
    response = await _service(context).start_extra_break(
        channel.community_id, channel.pool_key, _actor(update), duration,
    )
    await _respond(update, context, _community(channel), response)


@channel_command(BREAK_CHANNEL)
async def cmd_back(
    update: Update, context: ContextTypes.DEFAULT_TYPE, channel: ChannelContext,
) -> None:
    """Handle /back — end the active break."""
    response = await _service(context).end_break(
        channel.community_id, channel.pool_key, _actor(update),
    )
    await _respond(update, context, _community(channel), response)


@channel_command(None)
async def cmd_rights(
    update: Update, context: ContextTypes.DEFAULT_TYPE, channel: ChannelContext,
) -> None:
    """Handle /rights."""
    response = await _service(context).rights(
        channel.community_id, channel.pool_key, _actor(update),
    )
    await _respond(update, context, _community(channel), response)


@channel_command(REZ_CHANNEL)
async def cmd_reservations(
    update: Update, context: ContextTypes.DEFAULT_TYPE, channel: ChannelContext,
) -> None:
    """Handle /reservations."""
    response = await _service(context).reservations(
        channel.community_id, channel.pool_key, _actor(update), mention=mention_html,
    )
    await _respond(update, context, _community(channel), response, escape=False)


@channel_command(REZ_CHANNEL)
async def cmd_cancelrez(
    update: Update, context: ContextTypes.DEFAULT_TYPE, channel: ChannelContext,
) -> None:
    """Handle /cancelrez [all|HH:MM]."""
    match, time_str = parse_cancel_args(context.args or [])
    response = await _service(context).cancel_reservation(
        channel.community_id, channel.pool_key, _actor(update), match, time_str,
    )
    await _respond(update, context, _community(channel), response)


# ---------------------------------------------------------------------------
# Admin commands
# ---------------------------------------------------------------------------


_ADMIN_STATUSES = (ChatMemberStatus.ADMINISTRATOR, ChatMemberStatus.OWNER)

_ADMIN_USAGE = (
    "Admin commands:\n"
    "/admin report [pool] [day|week|month] [DD.MM.YYYY|today|yesterday]\n"
    "/admin user <user> [date] [date2]\n"
    "/admin grant <user> <5|10|20>\n"
    "/admin revoke <user> <duration> <normal|extra>\n"
    "/admin endbreak <user>\n"
    "/admin rez <user> <pool> <10|20> <HH:MM>\n"
    "/admin cancelrez <user> [all|HH:MM]\n"
    "/admin break <5|10|15|20|30|45|60>\n"
    "/admin back\n\n"
    "<user> is a numeric user id, or reply to one of the user's messages."
)


async def is_admin(update: Update, context: ContextTypes.DEFAULT_TYPE, community: CommunityConfig) -> bool:
    """Configured admin id, or administrator of the chat the command came from."""
    user_id = update.effective_user.id
    if user_id in community.admin_user_ids:
        return True
    try:
        member = await context.bot.get_chat_member(update.effective_chat.id, user_id)
    except TelegramError as exc:
        logger.warning("Admin lookup failed for user %d: %s", user_id, exc)
        return False
    return member.status in _ADMIN_STATUSES


def take_target(update: Update, args: list[str]) -> tuple[int, str | None, list[str]]:
    """Target user from the replied-to message or the first argument.

    Returns (user_id, display name if known, remaining args).
    """
    reply = update.message.reply_to_message
    if reply is not None and reply.from_user is not None:
        return reply.from_user.id, reply.from_user.full_name, args
    if not args or not args[0].lstrip("-").isdigit():
        raise UsageError("Name a user: reply to their message or give their numeric id.")
    return int(args[0]), None, args[1:]


async def _target_name(
    context: ContextTypes.DEFAULT_TYPE, chat_id: int, user_id: int, known: str | None,
) -> str | None:
    if known:
        return known
    try:
        member = await context.bot.get_chat_member(chat_id, user_id)
    except TelegramError:
        return None
    return member.user.full_name


async def cmd_admin(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /admin <subcommand> ..."""
    chat = update.effective_chat
    if chat is None or update.effective_user is None or update.message is None:
        return
    community = settings.community_for_chat(chat.id)
    if community is None:
        return
    # Network lookup happens here, before the service serializes anything.
    if not await is_admin(update, context, community):
        await update.message.reply_text("This command is for admins only.")
        return

    args = list(context.args or [])
    if not args:
        await update.message.reply_text(_ADMIN_USAGE)
        return
    sub, rest = args[0].lower(), args[1:]
    handler = _ADMIN_SUBCOMMANDS.get(sub)
    if handler is None:
        await update.message.reply_text("Unknown subcommand.\n\n" + _ADMIN_USAGE)
        return
    try:
        await handler(update, context, community, rest)
    except UsageError as exc:
        await update.message.reply_text(str(exc))


def _parse_date(service: BreakService, text: str | None):
    day = parse_date_input(text, service.now_ms(), ZoneInfo(settings.TIMEZONE))
    if day is None:
        raise UsageError("Invalid date. Examples: 17.02.2026, today, yesterday")
    return day


async def _admin_report(update, context, community, args) -> None:
    service = _service(context)
    pool_key = None
    period = Period.DAY
    date_text = None
    for arg in args:
        value = arg.lower()
        if value in POOL_KEYS:
            pool_key = value
        elif value in {p.value for p in Period}:
            period = Period(value)
        else:
            date_text = arg
    rng = period_range(_parse_date(service, date_text), period)
    if pool_key is None:
        response = await service.general_report(community.community_id, rng)
    else:
        response = await service.pool_report(community.community_id, pool_key, rng, mention=mention_html)
    logger.info(
        "Report viewed: %s %s %s by %d",
        pool_label(pool_key) if pool_key else "all pools", period.value, rng.label, update.effective_user.id,
    )
    await _respond(update, context, community, response, escape=False)


async def _admin_user(update, context, community, args) -> None:
    service = _service(context)
    target_id, known_name, rest = take_target(update, args)
    first = _parse_date(service, rest[0] if rest else None)
    second = _parse_date(service, rest[1]) if len(rest) > 1 else None
    name = await _target_name(context, update.effective_chat.id, target_id, known_name)
    detected = detect_shift_from_name(name)
    shift_label = f"{pool_label(detected[0])} ({detected[1].label})" if detected else None
    response = await service.user_report(
        community.community_id, target_id, user_range(first, second), shift_label, mention=mention_html,
    )
    await _respond(update, context, community, response, escape=False)


async def _admin_grant(update, context, community, args) -> None:
    target_id, _name, rest = take_target(update, args)
    duration = parse_duration(rest, 0, EXTRA_DURATIONS)
    response = await _service(context).grant_extra_right(
        community.community_id, update.effective_user.id, target_id, duration,
    )
    await _respond(update, context, community, response)


async def _admin_revoke(update, context, community, args) -> None:
    target_id, _name, rest = take_target(update, args)
    duration = parse_duration(rest, 0, EXTRA_DURATIONS)
    try:
        kind = RightKind(rest[1].lower())
    except (IndexError, ValueError):
        raise UsageError("Give the right kind: normal or extra.") from None
    response = await _service(context).revoke_right(
        community.community_id, update.effective_user.id, target_id, duration, kind,
    )
    await _respond(update, context, community, response)


async def _admin_endbreak(update, context, community, args) -> None:
    target_id, _name, _rest = take_target(update, args)
    response = await _service(context).admin_end_break(
        community.community_id, update.effective_user.id, target_id,
    )
    await _respond(update, context, community, response)


async def _admin_rez(update, context, community, args) -> None:
    target_id, _name, rest = take_target(update, args)
    if len(rest) < 3:
        raise UsageError("Usage: /admin rez <user> <pool> <10|20> <HH:MM>")
    pool_key = parse_pool(rest[0])
    duration = parse_duration(rest, 1, RESERVATION_DURATIONS)
    response = await _service(context).admin_create_reservation(
        community.community_id, update.effective_user.id, target_id, pool_key, duration, rest[2],
    )
    await _respond(update, context, community, response)


async def _admin_cancelrez(update, context, community, args) -> None:
    target_id, _name, rest = take_target(update, args)
    match, time_str = parse_cancel_args(rest)
    response = await _service(context).admin_cancel_reservation(
        community.community_id, update.effective_user.id, target_id, match, time_str,
    )
    await _respond(update, context, community, response)


async def _admin_break(update, context, community, args) -> None:
    duration = parse_duration(args, 0, ADMIN_BREAK_DURATIONS)
    response = await _service(context).start_admin_break(
        community.community_id, update.effective_user.id, duration,
    )
    await _respond(update, context, community, response)


async def _admin_back(update, context, community, args) -> None:
    response = await _service(context).end_admin_break(
        community.community_id, update.effective_user.id,
    )
    await _respond(update, context, community, response)


_ADMIN_SUBCOMMANDS = {
    "report": _admin_report,
    "user": _admin_user,
    "grant": _admin_grant,
    "revoke": _admin_revoke,
    "endbreak": _admin_endbreak,
    "rez": _admin_rez,
    "cancelrez": _admin_cancelrez,
    "break": _admin_break,
    "back": _admin_back,
}


# ---------------------------------------------------------------------------
# Error boundary
# ---------------------------------------------------------------------------


async def on_error(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Log unexpected handler failures and answer with a generic message."""
    logger.error("Unhandled error while processing an update", exc_info=context.error)
    if isinstance(update, Update) and update.effective_message is not None:
        try:
            await update.effective_message.reply_text(_GENERIC_FAILURE)
        except TelegramError as exc:
            logger.warning("Could not send the failure notice: %s", exc)


# ---------------------------------------------------------------------------
# Maintenance timer and shutdown
# ---------------------------------------------------------------------------


async def maintenance_job(context: ContextTypes.DEFAULT_TYPE) -> None:
    """Sweep every configured community and deliver what the sweep produced."""
    service: BreakService = context.bot_data["service"]
    notifier: NotificationPort = context.bot_data["notifier"]
    community_ids = [c.community_id for c in settings.COMMUNITIES]
    try:
        results = await service.run_maintenance_all(community_ids)
    except Exception:
        logger.exception("Maintenance sweep failed")
        return
    for community_id, notifications in results.items():
        if notifications:
            await deliver_notifications(notifier, settings.community(community_id), notifications)


async def flush_on_shutdown(app: Application) -> None:
    """Persist every cached community, bounded by the shutdown grace period."""
    service: BreakService = app.bot_data["service"]
    try:
        await asyncio.wait_for(service.flush_and_close(), timeout=settings.SHUTDOWN_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        logger.error(
            "Snapshot flush did not finish within %ds, shutting down anyway",
            settings.SHUTDOWN_TIMEOUT_SECONDS,
        )


# ---------------------------------------------------------------------------
# App builder
# ---------------------------------------------------------------------------


def build_app(
    service: BreakService | None = None,
    notifier: NotificationPort | None = None,
) -> Application:
    """Build and configure the Telegram Application with all handlers.

    Args:
        service: Break service. Defaults to one backed by SqliteSnapshotStore.
        notifier: Notification port implementation. Defaults to TelegramNotifier
                  (created from the bot instance after app is built).
    """
    app = (
        ApplicationBuilder()
        .token(settings.TELEGRAM_BOT_TOKEN)
        .post_shutdown(flush_on_shutdown)
        .build()
    )

    if service is None:
        from breakbot.data.db import SqliteSnapshotStore
        from breakbot.data.snapshot_queue import SnapshotQueue
        service = BreakService(SnapshotQueue(SqliteSnapshotStore()), ZoneInfo(settings.TIMEZONE))

    if notifier is None:
        from breakbot.adapters.telegram_notifier import TelegramNotifier
        notifier = TelegramNotifier(app.bot)

    app.bot_data["service"] = service
    app.bot_data["notifier"] = notifier

    app.add_handler(CommandHandler(["start", "help"], cmd_help))
    app.add_handler(CommandHandler("reserve", cmd_reserve))
    app.add_handler(CommandHandler("break", cmd_break))
    app.add_handler(CommandHandler("emergency", cmd_emergency))
    app.add_handler(CommandHandler("extra", cmd_extra))
    app.add_handler(CommandHandler("back", cmd_back))
    app.add_handler(CommandHandler("rights", cmd_rights))
    app.add_handler(CommandHandler("reservations", cmd_reservations))
    app.add_handler(CommandHandler("cancelrez", cmd_cancelrez))
    app.add_handler(CommandHandler("admin", cmd_admin))
    app.add_error_handler(on_error)

    app.job_queue.run_repeating(
        maintenance_job,
        interval=settings.MAINTENANCE_INTERVAL_SECONDS,
        first=settings.MAINTENANCE_INTERVAL_SECONDS,
        name="maintenance_sweep",
    )

    logger.info("Telegram bot application built with %d handlers", len(app.handlers[0]))
    return app


def main() -> None:
    """Entry point: build the app and start polling."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger.info("Starting shift break bot...")
    app = build_app()
    app.run_polling()


if __name__ == "__main__":
    main()
