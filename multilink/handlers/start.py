from telegram import Update
from telegram.ext import ContextTypes

from multilink.config import DEFAULT_TZ
from multilink.constants import UD_TZ
from multilink.handlers.session import current_profile, join_by_code
from multilink.prefs import PreferenceStore
from multilink.utils.links import parse_join_param
from multilink.utils.profiles import get_stats, update_profile
from multilink.utils.geo import format_distance
from multilink.utils.time_utils import format_elapsed, is_valid_tz


async def start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    user = update.effective_user
    current_profile(update, context)
    tz = context.user_data.get(UD_TZ, DEFAULT_TZ)
    theme = "dark" if PreferenceStore(context.user_data).is_dark_theme() else "light"
    msg = (
        f"Hi {user.first_name or 'there'}! I share live locations with a group for the length of a trip.\n\n"
        "• /create a session: name, start, destination, how long, how many people.\n"
        "• Share the join code; friends use /join <code>CODE</code> or tap your link.\n"
        "• Share your live location in this chat and everyone sees where you are (/who).\n"
        "• The host can /pause, /resume, /settings, /kick or /end; members can /pause their own sharing or /leave.\n"
        "• /sessions lists your sessions, /recent shows finished ones, /stats your totals.\n\n"
        f"Timezone: {tz} (change with /tz <code>IANA_tz</code>). Theme: {theme} (/theme dark|light)."
    )
    await update.effective_chat.send_message(msg)


async def start_param_entry(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle deep-link parameter: /start join_<CODE>"""
    message = update.message or update.edited_message
    if not message or not message.text:
        return
    parts = message.text.split(maxsplit=1)
    if len(parts) < 2:
        return
    code = parse_join_param(parts[1].strip())
    if code is None:
        await update.effective_chat.send_message("Invalid link parameter.")
        return
    await join_by_code(update, context, code)


async def tz_cmd(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not context.args:
        await update.effective_chat.send_message(
            f"Usage: /tz <code>IANA_timezone</code>\nExample: /tz Asia/Singapore\n"
            f"Current: {context.user_data.get(UD_TZ, DEFAULT_TZ)}"
        )
        return
    tzname = " ".join(context.args).strip()
    if not is_valid_tz(tzname):
        await update.effective_chat.send_message("Sorry, that timezone is not recognized.")
        return
    context.user_data[UD_TZ] = tzname
    await update.effective_chat.send_message(f"Timezone set to {tzname}.")


async def theme_cmd(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    prefs = PreferenceStore(context.user_data)
    if not context.args:
        current = "dark" if prefs.is_dark_theme() else "light"
        await update.effective_chat.send_message(f"Theme: {current}. Use /theme dark or /theme light.")
        return
    choice = context.args[0].strip().lower()
    if choice not in ("dark", "light"):
        await update.effective_chat.send_message("Use /theme dark or /theme light.")
        return
    prefs.save_theme(choice == "dark")
    await update.effective_chat.send_message(f"Theme set to {choice}.")


async def profile_cmd(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """
    Show the profile, or set the e-mail shown to people in your sessions.
    Usage: /profile [email <address>]
    """
    profile = current_profile(update, context)
    args = context.args or []
    if len(args) >= 2 and args[0].lower() == "email":
        address = args[1].strip()
        if "@" not in address:
            await update.effective_chat.send_message("That doesn't look like an e-mail address.")
            return
        profile = update_profile(context.bot_data, profile.id, email=address)
    await update.effective_chat.send_message(
        f"Name: {profile.name or '(none)'}\n"
        f"Phone: {profile.phone_number or 'not shared (send me your contact to add it)'}\n"
        f"E-mail: {profile.email or 'not set (/profile email you@example.com)'}"
    )


async def got_contact(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    contact = update.message.contact if update.message else None
    if contact is None:
        return
    user = update.effective_user
    # Only accept the user's own number
    if contact.user_id != user.id:
        await update.effective_chat.send_message("Please share your own contact.")
        return
    profile = current_profile(update, context)
    update_profile(context.bot_data, profile.id, phone_number=contact.phone_number or "")
    await update.effective_chat.send_message("Phone number saved to your profile.")


async def stats_cmd(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    stats = get_stats(context.bot_data, update.effective_user.id)
    await update.effective_chat.send_message(
        f"Sessions joined: {stats.total_sessions}\n"
        f"Time shared: {format_elapsed(stats.total_time_seconds * 1000)}\n"
        f"Distance: {format_distance(stats.total_distance_meters)}"
    )
