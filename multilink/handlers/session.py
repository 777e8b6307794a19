import html
import logging
from typing import Optional

from telegram import (
    Update,
    KeyboardButton,
    ReplyKeyboardMarkup,
    ReplyKeyboardRemove,
    InlineKeyboardButton,
    InlineKeyboardMarkup,
)
from telegram.ext import ContextTypes, ConversationHandler

from multilink.config import MAX_PEOPLE_LIMIT, MAX_PEOPLE_POLICY, OFFLINE_AFTER_SECONDS
from multilink.constants import (
    ASK_TITLE,
    ASK_FROM,
    ASK_TO,
    ASK_DURATION,
    ASK_CAPACITY,
    UD_ACTIVE,
    UD_DRAFT,
)
from multilink.decoding import session_from_record
from multilink.exceptions import MultiLinkError
from multilink.jobs.expiry import schedule_expiry, cancel_expiry, clear_active_session
from multilink.model import SessionData, UserProfile
from multilink.prefs import PreferenceStore
from multilink.utils.geo import format_distance, route_distance_m
from multilink.utils.links import build_join_link, build_map_link
from multilink.utils.places import place_from_message
from multilink.utils.profiles import ensure_profile
from multilink.utils.sessions import (
    build_ui_state,
    create_session,
    delete_recent_session,
    find_session,
    find_session_id_by_code,
    get_participants,
    is_participant,
    join_session,
    leave_session,
    list_recent_sessions,
    remove_participant,
    set_participant_paused,
    set_paused,
    stop_session,
    update_location,
    update_settings,
)
from multilink.utils.time_utils import (
    format_elapsed,
    format_local,
    get_user_tz,
    now_ms,
    parse_duration,
)

logger = logging.getLogger(__name__)

_TOGGLES = {
    "sharing": "is_sharing_allowed",
    "visible": "is_users_visible",
    "hostshare": "is_host_sharing",
}


def _esc(text: str) -> str:
    return html.escape(text or "")


def current_profile(update: Update, context: ContextTypes.DEFAULT_TYPE) -> UserProfile:
    user = update.effective_user
    return ensure_profile(context.bot_data, user.id, user.full_name or "User", now_ms())


def active_session(context: ContextTypes.DEFAULT_TYPE) -> Optional[SessionData]:
    session_id = context.user_data.get(UD_ACTIVE)
    if not session_id:
        return None
    session = find_session(context.bot_data, session_id)
    if session is None:
        context.user_data.pop(UD_ACTIVE, None)
    return session


def session_keyboard(session: SessionData, is_host: bool) -> InlineKeyboardMarkup:
    sid = session.id
    rows = [[InlineKeyboardButton("👥 Who's here", callback_data=f"who:{sid}")]]
    if is_host:
        if session.is_paused:
            toggle = InlineKeyboardButton("▶️ Resume", callback_data=f"resume:{sid}")
        else:
            toggle = InlineKeyboardButton("⏸ Pause", callback_data=f"pause:{sid}")
        rows.append([toggle, InlineKeyboardButton("⏹ End session", callback_data=f"end:{sid}")])
    else:
        rows.append([InlineKeyboardButton("🚪 Leave", callback_data=f"leave:{sid}")])
    return InlineKeyboardMarkup(rows)


def format_session_card(session: SessionData, tz, bot_username: Optional[str] = None, dark: bool = False) -> str:
    marker = "🌙" if dark else "📍"
    lines = [f"{marker} <b>{_esc(session.title) or 'Untitled session'}</b> ({session.status})"]
    route = f"{_esc(session.from_location) or '?'} → {_esc(session.to_location) or '?'}"
    distance = route_distance_m(session.start_lat, session.start_lng, session.end_lat, session.end_lng)
    if distance is not None:
        route += f" ({format_distance(distance)})"
    lines.append(route)
    lines.append(f"Host: {_esc(session.host_name)}")
    lines.append(f"Join code: <code>{session.join_code}</code>")
    if bot_username:
        lines.append(build_join_link(bot_username, session.join_code))
    capacity = min(session.max_people_count, MAX_PEOPLE_LIMIT)
    lines.append(f"People: {session.active_users}/{capacity}")
    if session.expires_at_ms is not None:
        lines.append(f"Ends: {format_local(session.expires_at_ms, tz)}")
    lines.append(
        "Location sharing: {}. Members see each other: {}. Host sharing: {}.".format(
            "on" if session.is_sharing_allowed else "off",
            "yes" if session.is_users_visible else "no",
            "on" if session.is_host_sharing else "off",
        )
    )
    return "\n".join(lines)


async def send_session_card(update: Update, context: ContextTypes.DEFAULT_TYPE, session: SessionData) -> None:
    is_host = str(update.effective_user.id) == session.host_id
    dark = PreferenceStore(context.user_data).is_dark_theme()
    await update.effective_chat.send_message(
        format_session_card(session, get_user_tz(context), getattr(context.bot, "username", None), dark),
        reply_markup=session_keyboard(session, is_host),
    )


async def _notify(context: ContextTypes.DEFAULT_TYPE, user_ids, text: str, skip: Optional[str] = None) -> None:
    for uid in user_ids:
        if uid == skip:
            continue
        try:
            await context.bot.send_message(int(uid), text)
        except Exception as e:
            # Common case: user blocked the bot; skip and continue
            logger.info("failed DM to %s: %s", uid, e)


# ---------- /create conversation ----------


async def create_cmd(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    context.user_data[UD_DRAFT] = {}
    await update.effective_chat.send_message(
        "Let's set up a shared trip. What should we call it? (e.g. <i>Saturday ride</i>)"
    )
    return ASK_TITLE


async def got_title(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    title = (update.message.text or "").strip()
    if not title:
        await update.effective_chat.send_message("Please type a name for the trip.")
        return ASK_TITLE
    context.user_data.setdefault(UD_DRAFT, {})["title"] = title
    kb = [[KeyboardButton(text="Use my current location 📍", request_location=True)]]
    await update.effective_chat.send_message(
        "Where does it start? Send a pin, pick a place from the attachment menu, or type a name.",
        reply_markup=ReplyKeyboardMarkup(kb, resize_keyboard=True, one_time_keyboard=True),
    )
    return ASK_FROM


async def got_from(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    place = place_from_message(update.message)
    if place is None:
        await update.effective_chat.send_message("Please send a location pin or type a place name.")
        return ASK_FROM
    label, lat, lng = place
    draft = context.user_data.setdefault(UD_DRAFT, {})
    draft["fromLocation"] = label
    if lat is not None:
        draft["startLat"], draft["startLng"] = lat, lng
    await update.effective_chat.send_message(
        "And where are you heading? Send a pin or place, or type a name.",
        reply_markup=ReplyKeyboardRemove(),
    )
    return ASK_TO


async def got_to(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    place = place_from_message(update.message)
    if place is None:
        await update.effective_chat.send_message("Please send a location pin or type a place name.")
        return ASK_TO
    label, lat, lng = place
    draft = context.user_data.setdefault(UD_DRAFT, {})
    draft["toLocation"] = label
    if lat is not None:
        draft["endLat"], draft["endLng"] = lat, lng

    ikb = InlineKeyboardMarkup([
        [InlineKeyboardButton("30 min", callback_data="dur:30:Mins"),
         InlineKeyboardButton("1 hr", callback_data="dur:1:Hrs")],
        [InlineKeyboardButton("2 hrs", callback_data="dur:2:Hrs"),
         InlineKeyboardButton("4 hrs", callback_data="dur:4:Hrs")],
        [InlineKeyboardButton("1 day", callback_data="dur:1:Days")],
    ])
    await update.effective_chat.send_message(
        "How long should sharing last? Pick one or type it (e.g. <code>90 mins</code>).",
        reply_markup=ikb,
    )
    return ASK_DURATION


async def _ask_capacity(update: Update) -> int:
    options = sorted({5, 10, 20, MAX_PEOPLE_LIMIT})
    ikb = InlineKeyboardMarkup([[InlineKeyboardButton(str(n), callback_data=f"cap:{n}") for n in options]])
    await update.effective_chat.send_message(
        f"How many people can join? Pick one or type a number (max {MAX_PEOPLE_LIMIT}).",
        reply_markup=ikb,
    )
    return ASK_CAPACITY


async def duration_buttons(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    query = update.callback_query
    await query.answer()
    try:
        _, val, unit = query.data.split(":")
    except ValueError:
        await query.edit_message_text("Sorry, invalid option. Type the duration instead (e.g. 2 hrs).")
        return ASK_DURATION
    draft = context.user_data.setdefault(UD_DRAFT, {})
    draft["durationVal"], draft["durationUnit"] = val, unit
    await query.edit_message_text(f"Duration: {val} {unit}")
    return await _ask_capacity(update)


async def duration_text(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    parsed = parse_duration(update.message.text)
    if parsed is None:
        await update.effective_chat.send_message("Try something like <code>45 mins</code>, <code>3 hrs</code> or <code>1 day</code>.")
        return ASK_DURATION
    draft = context.user_data.setdefault(UD_DRAFT, {})
    draft["durationVal"], draft["durationUnit"] = parsed
    return await _ask_capacity(update)


async def capacity_buttons(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    query = update.callback_query
    await query.answer()
    return await finish_create(update, context, query.data.split(":", 1)[1])


async def capacity_text(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    return await finish_create(update, context, (update.message.text or "").strip())


async def finish_create(update: Update, context: ContextTypes.DEFAULT_TYPE, max_people: str) -> int:
    draft = dict(context.user_data.get(UD_DRAFT) or {})
    draft["maxPeople"] = max_people
    host = current_profile(update, context)
    try:
        session = create_session(
            context.bot_data,
            host,
            session_from_record(draft, ""),
            now=now_ms(),
            limit=MAX_PEOPLE_LIMIT,
            policy=MAX_PEOPLE_POLICY,
        )
    except MultiLinkError as e:
        await update.effective_chat.send_message(f"{e.message} Please pick another number.")
        return ASK_CAPACITY

    context.user_data.pop(UD_DRAFT, None)
    context.user_data[UD_ACTIVE] = session.id
    if schedule_expiry(context.job_queue, session, chat_id=update.effective_chat.id) is None:
        logger.warning("no JobQueue; session %s will not expire on its own", session.id)

    await send_session_card(update, context, session)
    await update.effective_chat.send_message(
        "Share the code or link with your group. "
        "To show up on the map, share your live location in this chat."
    )
    return ConversationHandler.END


async def cancel_create(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    context.user_data.pop(UD_DRAFT, None)
    await update.effective_chat.send_message("Okay, nothing was created.", reply_markup=ReplyKeyboardRemove())
    return ConversationHandler.END


# ---------- Membership ----------


async def join_by_code(update: Update, context: ContextTypes.DEFAULT_TYPE, code: str) -> None:
    session_id = find_session_id_by_code(context.bot_data, code)
    if session_id is None:
        await update.effective_chat.send_message(f"No session found for code <code>{_esc(code)}</code>.")
        return
    profile = current_profile(update, context)
    try:
        join_session(context.bot_data, session_id, profile, now=now_ms(), limit=MAX_PEOPLE_LIMIT)
    except MultiLinkError as e:
        await update.effective_chat.send_message(e.message)
        return

    context.user_data[UD_ACTIVE] = session_id
    session = find_session(context.bot_data, session_id)
    await send_session_card(update, context, session)
    await update.effective_chat.send_message(
        "You're in! Share your live location in this chat so the group can see you."
    )
    if session.host_id != profile.id:
        await _notify(context, [session.host_id], f"👋 {_esc(profile.name)} joined {_esc(session.title)}.")


async def join_cmd(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not context.args:
        await update.effective_chat.send_message("Usage: /join <code>CODE</code>")
        return
    await join_by_code(update, context, context.args[0])


async def _leave(update: Update, context: ContextTypes.DEFAULT_TYPE, session_id: str) -> None:
    uid = str(update.effective_user.id)
    try:
        recent = leave_session(context.bot_data, session_id, uid, now=now_ms())
    except MultiLinkError as e:
        await update.effective_chat.send_message(e.message)
        return
    if context.user_data.get(UD_ACTIVE) == session_id:
        context.user_data.pop(UD_ACTIVE, None)
    await update.effective_chat.send_message(
        f"You left {_esc(recent.title) or 'the session'}. It's saved in /recent.",
        reply_markup=ReplyKeyboardRemove(),
    )


async def leave_cmd(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    session = active_session(context)
    if session is None:
        await update.effective_chat.send_message("You're not in a session right now.")
        return
    await _leave(update, context, session.id)


async def _end(update: Update, context: ContextTypes.DEFAULT_TYPE, session_id: str) -> None:
    uid = str(update.effective_user.id)
    session = find_session(context.bot_data, session_id)
    try:
        archived = stop_session(context.bot_data, session_id, now=now_ms(), user_id=uid)
    except MultiLinkError as e:
        await update.effective_chat.send_message(e.message)
        return
    cancel_expiry(context.job_queue, session_id)
    context.user_data.pop(UD_ACTIVE, None)
    for other in archived:
        if other != uid:
            clear_active_session(context, other, session_id)
    title = _esc(session.title) if session else "The session"
    await update.effective_chat.send_message(f"⏹ {title} has ended. Summary saved in /recent.")
    await _notify(context, archived, f"⏹ {title} was ended by the host. See /recent for the summary.", skip=uid)


async def end_cmd(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    session = active_session(context)
    if session is None:
        await update.effective_chat.send_message("You're not in a session right now.")
        return
    await _end(update, context, session.id)


async def _set_paused(update: Update, context: ContextTypes.DEFAULT_TYPE, session_id: str, paused: bool) -> None:
    uid = str(update.effective_user.id)
    session = find_session(context.bot_data, session_id)
    # Members pause only their own sharing; the host pauses the whole session
    if session is not None and session.host_id != uid and is_participant(context.bot_data, session_id, uid):
        set_participant_paused(context.bot_data, session_id, uid, paused)
        note = "paused. The group sees your last position" if paused else "back on"
        await update.effective_chat.send_message(f"Your location sharing is {note}.")
        return
    try:
        session = set_paused(context.bot_data, session_id, uid, paused)
    except MultiLinkError as e:
        await update.effective_chat.send_message(e.message)
        return
    await send_session_card(update, context, session)
    people = [p.id for p in get_participants(context.bot_data, session_id)]
    note = "paused; locations are frozen" if paused else "live again"
    await _notify(context, people, f"{_esc(session.title)} is {note}.", skip=session.host_id)


async def pause_cmd(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    session = active_session(context)
    if session is None:
        await update.effective_chat.send_message("You're not in a session right now.")
        return
    await _set_paused(update, context, session.id, True)


async def resume_cmd(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    session = active_session(context)
    if session is None:
        await update.effective_chat.send_message("You're not in a session right now.")
        return
    await _set_paused(update, context, session.id, False)


async def _who(update: Update, context: ContextTypes.DEFAULT_TYPE, session_id: str) -> None:
    session = find_session(context.bot_data, session_id)
    if session is None:
        await update.effective_chat.send_message("That session has ended.")
        return
    now = now_ms()
    people = get_participants(
        context.bot_data,
        session_id,
        viewer_id=str(update.effective_user.id),
        now=now,
        offline_after_ms=OFFLINE_AFTER_SECONDS * 1000,
    )
    if not people:
        await update.effective_chat.send_message("Nobody is sharing yet.")
        return
    lines = [f"<b>{_esc(session.title)}</b>: {len(people)} visible"]
    for p in people:
        badge = " (host)" if p.id == session.host_id else ""
        line = f"• {_esc(p.name)}{badge}: {p.status}, 🔋{p.battery_level}%"
        if p.last_updated > 0:
            line += f", seen {format_elapsed(now - p.last_updated)} ago"
        if p.has_fix:
            line += f"\n  {build_map_link(p.lat, p.lng)}"
        lines.append(line)
    await update.effective_chat.send_message("\n".join(lines))


async def who_cmd(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    session = active_session(context)
    if session is None:
        await update.effective_chat.send_message("You're not in a session right now.")
        return
    await _who(update, context, session.id)


async def settings_cmd(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """
    Host-only session settings.
    Usage:
      /settings sharing on|off
      /settings visible on|off
      /settings hostshare on|off
      /settings capacity <n>
    """
    session = active_session(context)
    if session is None:
        await update.effective_chat.send_message("You're not in a session right now.")
        return
    args = [a.lower() for a in (context.args or [])]
    if len(args) < 2:
        await update.effective_chat.send_message(
            "Usage:\n/settings sharing on|off\n/settings visible on|off\n"
            "/settings hostshare on|off\n/settings capacity <n>"
        )
        return

    key, value = args[0], args[1]
    changes = {}
    if key == "capacity":
        changes["max_people"] = value
    elif key in _TOGGLES and value in ("on", "off"):
        changes[_TOGGLES[key]] = value == "on"
    else:
        await update.effective_chat.send_message("Unknown setting. Use sharing, visible, hostshare or capacity.")
        return

    try:
        session = update_settings(
            context.bot_data,
            session.id,
            update.effective_user.id,
            now=now_ms(),
            limit=MAX_PEOPLE_LIMIT,
            policy=MAX_PEOPLE_POLICY,
            **changes,
        )
    except MultiLinkError as e:
        await update.effective_chat.send_message(e.message)
        return
    await send_session_card(update, context, session)


async def sessions_cmd(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    state = build_ui_state(context.bot_data, update.effective_user.id)
    if state.error:
        await update.effective_chat.send_message(state.error)
        return
    if not state.sessions:
        await update.effective_chat.send_message("No sessions yet. Start one with /create or /join a code.")
        return
    current = context.user_data.get(UD_ACTIVE)
    lines = [f"Your sessions ({len(state.active_sessions)} live):"]
    for s in state.sessions:
        mark = " ← current" if s.id == current else ""
        lines.append(f"• {_esc(s.title) or 'Untitled'} [{s.status}] code <code>{s.join_code}</code>{mark}")
    lines.append("Use /join CODE to switch.")
    await update.effective_chat.send_message("\n".join(lines))


async def recent_cmd(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    recents = list_recent_sessions(context.bot_data, update.effective_user.id, now=now_ms())
    if not recents:
        await update.effective_chat.send_message("No recent sessions in the last 10 days.")
        return
    blocks = []
    for i, rs in enumerate(recents, start=1):
        blocks.append(
            f"{i}. <b>{_esc(rs.title)}</b> · {_esc(rs.completed_date)}\n"
            f"{_esc(rs.start_loc)} → {_esc(rs.end_loc)} · {rs.total_distance} · {rs.duration} · {rs.participants}\n"
            f"Host: {_esc(rs.host_name)} · {_esc(rs.completion_reason)}"
        )
    blocks.append("Remove an entry with /forget <i>number</i>.")
    await update.effective_chat.send_message("\n\n".join(blocks))


async def forget_cmd(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Usage: /forget N  (N as numbered in /recent)"""
    uid = update.effective_user.id
    recents = list_recent_sessions(context.bot_data, uid, now=now_ms())
    try:
        index = int(context.args[0]) - 1 if context.args else -1
    except ValueError:
        index = -1
    if not 0 <= index < len(recents):
        await update.effective_chat.send_message("Usage: /forget <i>number</i> from /recent")
        return
    target = recents[index]
    delete_recent_session(context.bot_data, uid, target.id)
    await update.effective_chat.send_message(f"Removed {_esc(target.title)} from your history.")


async def kick_cmd(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Host only. Usage: /kick <name>"""
    session = active_session(context)
    if session is None:
        await update.effective_chat.send_message("You're not in a session right now.")
        return
    name = " ".join(context.args or []).strip().lower()
    if not name:
        await update.effective_chat.send_message("Usage: /kick <i>name</i> (as shown in /who)")
        return
    matches = [p for p in get_participants(context.bot_data, session.id) if p.name.lower() == name]
    if len(matches) != 1:
        msg = "Nobody by that name here." if not matches else "More than one person has that name."
        await update.effective_chat.send_message(msg)
        return
    target = matches[0]
    try:
        remove_participant(context.bot_data, session.id, update.effective_user.id, target.id, now=now_ms())
    except MultiLinkError as e:
        await update.effective_chat.send_message(e.message)
        return
    clear_active_session(context, target.id, session.id)
    await update.effective_chat.send_message(f"Removed {_esc(target.name)} from {_esc(session.title)}.")
    await _notify(context, [target.id], f"The host removed you from {_esc(session.title)}. It's saved in /recent.")


# ---------- Live location ----------


async def location_update(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    message = update.effective_message
    if message is None or message.location is None:
        return
    session = active_session(context)
    if session is None:
        return
    # Live location edits arrive as edited messages; only reply to fresh pins
    is_live_edit = update.edited_message is not None
    loc = message.location
    uid = str(update.effective_user.id)
    if uid == session.host_id and not session.is_host_sharing:
        if not is_live_edit:
            await update.effective_chat.send_message(
                "Not shared: host sharing is off for this session. Use /settings hostshare on."
            )
        return
    try:
        updated = update_location(
            context.bot_data,
            session.id,
            uid,
            loc.latitude,
            loc.longitude,
            now=now_ms(),
            heading=loc.heading,
        )
    except MultiLinkError as e:
        if not is_live_edit:
            await update.effective_chat.send_message(e.message)
        return
    if is_live_edit:
        return
    if updated is None:
        if session.is_paused:
            reason = "the session is paused"
        elif session.is_sharing_allowed:
            reason = "you paused your sharing (/resume to turn it back on)"
        else:
            reason = "location sharing is off for this session"
        await update.effective_chat.send_message(f"Not shared: {reason}.")
        return
    await update.effective_chat.send_message("Location updated.")


async def button_handler(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()
    action, _, session_id = (query.data or "").partition(":")
    if not session_id:
        return
    if action == "who":
        await _who(update, context, session_id)
    elif action == "pause":
        await _set_paused(update, context, session_id, True)
    elif action == "resume":
        await _set_paused(update, context, session_id, False)
    elif action == "end":
        await _end(update, context, session_id)
    elif action == "leave":
        await _leave(update, context, session_id)
