import logging
from telegram.constants import ParseMode
from telegram.ext import (
    Application,
    CommandHandler,
    MessageHandler,
    ConversationHandler,
    CallbackQueryHandler,
    Defaults,
    PicklePersistence,
    filters,
)

from multilink.config import TELEGRAM_TOKEN, PERSISTENCE_FILE
from multilink.constants import ASK_TITLE, ASK_FROM, ASK_TO, ASK_DURATION, ASK_CAPACITY
from multilink.handlers.errors import on_error
from multilink.handlers.start import (
    start,
    start_param_entry,
    tz_cmd,
    theme_cmd,
    profile_cmd,
    got_contact,
    stats_cmd,
)
from multilink.handlers.session import (
    create_cmd,
    got_title,
    got_from,
    got_to,
    duration_buttons,
    duration_text,
    capacity_buttons,
    capacity_text,
    cancel_create,
    join_cmd,
    leave_cmd,
    end_cmd,
    pause_cmd,
    resume_cmd,
    who_cmd,
    settings_cmd,
    sessions_cmd,
    recent_cmd,
    forget_cmd,
    kick_cmd,
    location_update,
    button_handler,
)
from multilink.jobs.expiry import reschedule_all

PLACE = filters.VENUE | filters.LOCATION | (filters.TEXT & ~filters.COMMAND)


def build_app() -> Application:
    persistence = PicklePersistence(filepath=PERSISTENCE_FILE)

    app = (
        Application.builder()
        .token(TELEGRAM_TOKEN)
        .persistence(persistence)
        .defaults(Defaults(parse_mode=ParseMode.HTML))
        .post_init(reschedule_all)
        .build()
    )

    # Deep-link /start with parameter *before* bare /start so it can catch the param variant
    app.add_handler(
        MessageHandler(
            filters.Regex(r"^/start\s+\S+"),
            start_param_entry,
            block=False,
        )
    )
    app.add_handler(CommandHandler("start", start))
    app.add_handler(CommandHandler("help", start))

    # Preferences / profile
    app.add_handler(CommandHandler("tz", tz_cmd))
    app.add_handler(CommandHandler("theme", theme_cmd))
    app.add_handler(CommandHandler("profile", profile_cmd))
    app.add_handler(CommandHandler("stats", stats_cmd))

    # Session setup flow
    conv = ConversationHandler(
        entry_points=[CommandHandler("create", create_cmd)],
        states={
            ASK_TITLE: [MessageHandler(filters.TEXT & ~filters.COMMAND, got_title)],
            ASK_FROM: [MessageHandler(PLACE, got_from)],
            ASK_TO: [MessageHandler(PLACE, got_to)],
            ASK_DURATION: [
                CallbackQueryHandler(duration_buttons, pattern=r"^dur:"),
                MessageHandler(filters.TEXT & ~filters.COMMAND, duration_text),
            ],
            ASK_CAPACITY: [
                CallbackQueryHandler(capacity_buttons, pattern=r"^cap:"),
                MessageHandler(filters.TEXT & ~filters.COMMAND, capacity_text),
            ],
        },
        fallbacks=[CommandHandler("cancel", cancel_create)],
        name="create_flow",
        persistent=True,
    )
    app.add_handler(conv)

    # Membership
    app.add_handler(CommandHandler("join", join_cmd))
    app.add_handler(CommandHandler("leave", leave_cmd))
    app.add_handler(CommandHandler("end", end_cmd))
    app.add_handler(CommandHandler("pause", pause_cmd))
    app.add_handler(CommandHandler("resume", resume_cmd))
    app.add_handler(CommandHandler("who", who_cmd))
    app.add_handler(CommandHandler("settings", settings_cmd))
    app.add_handler(CommandHandler("sessions", sessions_cmd))
    app.add_handler(CommandHandler("recent", recent_cmd))
    app.add_handler(CommandHandler("forget", forget_cmd))
    app.add_handler(CommandHandler("kick", kick_cmd))
    app.add_handler(CallbackQueryHandler(button_handler, pattern=r"^(who|pause|resume|end|leave):"))

    # Pins and live-location edits while in a session
    app.add_handler(
        MessageHandler(
            filters.LOCATION & (filters.UpdateType.MESSAGE | filters.UpdateType.EDITED_MESSAGE),
            location_update,
        )
    )
    app.add_handler(MessageHandler(filters.CONTACT, got_contact))

    app.add_error_handler(on_error)
    return app


def main():
    logging.basicConfig(
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        level=logging.INFO,
    )
    if not TELEGRAM_TOKEN or TELEGRAM_TOKEN == "PUT-YOUR-TOKEN-HERE":
        raise SystemExit(
            "Missing bot token.\n"
            "Set BOT_TOKEN in your environment or .env file (or TELEGRAM_TOKEN for backward-compat).\n"
            "Example .env:\n"
            "  BOT_TOKEN=123456:ABC-DEF...\n"
        )
    app = build_app()

    # Sessions expire through the JobQueue (installed with the extra)
    if app.job_queue is None:
        raise SystemExit(
            "JobQueue is not available. Install with:\n"
            '  pip install "python-telegram-bot[job-queue]"\n'
        )

    app.run_polling()


if __name__ == "__main__":
    main()
