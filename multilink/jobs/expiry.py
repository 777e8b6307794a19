import logging
from typing import Optional

from telegram.ext import ContextTypes

from multilink.constants import BD_SESSIONS, REASON_EXPIRED, UD_ACTIVE
from multilink.decoding import session_from_record
from multilink.model import SessionData
from multilink.utils.sessions import find_session, stop_session
from multilink.utils.time_utils import now_ms

logger = logging.getLogger(__name__)


def expiry_job_name(session_id: str) -> str:
    return f"expiry_{session_id}"


def schedule_expiry(job_queue, session: SessionData, chat_id: Optional[int] = None, now: Optional[int] = None):
    """(Re)schedule the job that ends ``session`` when its duration runs out."""
    if job_queue is None or session.expires_at_ms is None:
        return None
    cancel_expiry(job_queue, session.id)
    now = now_ms() if now is None else now
    delay = max((session.expires_at_ms - now) / 1000.0, 1.0)
    return job_queue.run_once(
        expiry_job,
        delay,
        chat_id=chat_id,
        name=expiry_job_name(session.id),
        data={"session_id": session.id},
    )


def cancel_expiry(job_queue, session_id: str) -> int:
    if job_queue is None:
        return 0
    jobs = job_queue.get_jobs_by_name(expiry_job_name(session_id))
    for job in jobs:
        job.schedule_removal()
    return len(jobs)


async def expiry_job(context: ContextTypes.DEFAULT_TYPE) -> None:
    payload = getattr(context.job, "data", None) or {}
    session_id = payload.get("session_id")
    if not session_id:
        return

    session = find_session(context.bot_data, session_id)
    # Already ended by the host
    if session is None or session.is_terminal:
        return

    archived = stop_session(context.bot_data, session_id, now=now_ms(), reason=REASON_EXPIRED)
    logger.info("expiry_job: session %s expired, %d participant(s)", session_id, len(archived))

    title = session.title or "Your session"
    for uid in archived:
        clear_active_session(context, uid, session_id)
        try:
            await context.bot.send_message(
                int(uid),
                f"⏱ {title} reached its time limit and has ended. See /recent for the summary.",
            )
        except Exception as e:
            logger.info("expiry_job: failed DM to participant %s: %s", uid, e)

    # Host may not have been sharing, tell them anyway
    if session.host_id and session.host_id not in archived:
        try:
            await context.bot.send_message(int(session.host_id), f"⏱ {title} reached its time limit and has ended.")
        except Exception as e:
            logger.info("expiry_job: failed DM to host %s: %s", session.host_id, e)


def clear_active_session(context, user_id: str, session_id: str) -> None:
    application = getattr(context, "application", None)
    user_data_map = getattr(application, "user_data", None)
    if not user_data_map:
        return
    try:
        ud = user_data_map.get(int(user_id))
    except ValueError:
        return
    if ud is not None and ud.get(UD_ACTIVE) == session_id:
        ud.pop(UD_ACTIVE, None)


async def reschedule_all(application) -> int:
    """post_init hook: JobQueue jobs aren't persisted, so re-arm expiry for stored sessions."""
    if application.job_queue is None:
        return 0
    now = now_ms()
    count = 0
    for sid, record in list(application.bot_data.get(BD_SESSIONS, {}).items()):
        session = session_from_record(record, sid)
        if session.is_terminal:
            continue
        if schedule_expiry(application.job_queue, session, chat_id=_host_chat(session), now=now) is not None:
            count += 1
    logger.info("rescheduled expiry for %d session(s)", count)
    return count


def _host_chat(session: SessionData) -> Optional[int]:
    try:
        return int(session.host_id)
    except ValueError:
        return None
