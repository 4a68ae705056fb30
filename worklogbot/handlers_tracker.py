import re
from datetime import datetime

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, KeyboardButton, ReplyKeyboardMarkup, Update
from telegram.ext import CallbackQueryHandler, CommandHandler, ContextTypes, MessageHandler, filters

from worklogbot.guards import ensure_owner
from worklogbot.models import MODE_AWAITING_WORK_LOCATION, MODE_IDLE, Coordinate, UserSettings
from worklogbot.reports import format_duration, format_report, today_summary
from worklogbot.tracker import TrackerSnapshot

BTN_START_WORK = "🟢 Начать работу"
BTN_STOP_WORK = "🔴 Закончить работу"
BTN_STATUS = "📍 Статус"
BTN_REPORT = "📊 Отчёт"
BTN_INSIGHT = "✨ AI-сводка"
BTN_SETTINGS = "⚙️ Настройки"
BTN_SEND_LOCATION = "📍 Отправить геопозицию"

MODE_KEY = "mode"
HISTORY_LIMIT = 10


def main_menu_keyboard(is_working: bool) -> ReplyKeyboardMarkup:
    return ReplyKeyboardMarkup(
        [
            [KeyboardButton(BTN_STOP_WORK if is_working else BTN_START_WORK)],
            [KeyboardButton(BTN_STATUS), KeyboardButton(BTN_REPORT)],
            [KeyboardButton(BTN_INSIGHT), KeyboardButton(BTN_SETTINGS)],
            [KeyboardButton(BTN_SEND_LOCATION, request_location=True)],
        ],
        resize_keyboard=True,
        one_time_keyboard=False,
    )


def settings_keyboard(settings: UserSettings) -> InlineKeyboardMarkup:
    autolog_label = "🤖 Автоучёт: вкл" if settings.auto_log else "🤖 Автоучёт: выкл"
    return InlineKeyboardMarkup(
        [
            [InlineKeyboardButton("📌 Работа здесь (последняя точка)", callback_data="set_work_here")],
            [InlineKeyboardButton(autolog_label, callback_data="toggle_autolog")],
        ]
    )


def parse_radius(raw: str):
    try:
        value = float(str(raw).replace(",", ".").strip())
    except (TypeError, ValueError):
        return None
    return value if value > 0 else None


def parse_coordinate(args: list[str]):
    if len(args) != 2:
        return None
    try:
        lat = float(args[0].replace(",", "."))
        lon = float(args[1].replace(",", "."))
    except ValueError:
        return None
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0):
        return None
    return Coordinate(latitude=lat, longitude=lon)


def format_settings(settings: UserSettings) -> str:
    if settings.work_location:
        location_text = f"{settings.work_location.latitude:.6f}, {settings.work_location.longitude:.6f}"
    else:
        location_text = "не задано (отправьте геопозицию с рабочего места)"
    return (
        "⚙️ Настройки\n"
        f"Рабочее место: {location_text}\n"
        f"Радиус: {settings.radius_meters:.0f} м\n"
        f"Автоучёт по геозоне: {'вкл' if settings.auto_log else 'выкл'}\n\n"
        "/radius <м> — изменить радиус\n"
        "/autolog on|off — автоучёт\n"
        "/setwork [lat lon] — задать рабочее место"
    )


def format_status(snapshot: TrackerSnapshot, now: int) -> str:
    settings = snapshot.settings
    if settings.work_location is None:
        location_line = "📍 Рабочее место не задано"
    elif snapshot.at_work:
        location_line = "✅ Вы на работе"
    elif snapshot.distance_m is not None:
        location_line = f"🚶 Вне работы ({round(snapshot.distance_m)} м)"
    else:
        location_line = "🚶 Вне работы (расстояние неизвестно)"

    elapsed = now - snapshot.active_session_start if snapshot.active_session_start is not None else 0

    if snapshot.is_working:
        hint = "Так держать!"
    elif settings.auto_log:
        hint = "Автостарт активен..." if snapshot.at_work else "Ждём прибытия на работу..."
    else:
        hint = "Готов к записи."

    today_ms, today_count = today_summary(snapshot.sessions, now)
    lines = [
        location_line,
        f"Текущая сессия: {format_duration(elapsed)}",
        f"{'Работаю...' if snapshot.is_working else 'Не работаю'} — {hint}",
        f"Сегодня: {format_duration(today_ms)}, сессий: {today_count}",
    ]
    if snapshot.next_delay_ms is not None:
        lines.append(f"Следующая проверка геопозиции через {snapshot.next_delay_ms // 1000} с (зона: {snapshot.zone or '—'})")
    if snapshot.last_sample_failure:
        lines.append(f"⚠️ Последняя геопозиция не получена: {snapshot.last_sample_failure}")
    return "\n".join(lines)


def format_history(snapshot: TrackerSnapshot, limit: int = HISTORY_LIMIT) -> str:
    if not snapshot.sessions:
        return "История пуста."
    lines = ["🗂 Последние сессии:"]
    for session in snapshot.sessions[-limit:][::-1]:
        start = datetime.fromtimestamp(session.start_time / 1000.0).strftime("%d.%m %H:%M")
        if session.is_open:
            lines.append(f"{start} — сейчас (идёт)")
            continue
        end = datetime.fromtimestamp(session.end_time / 1000.0).strftime("%H:%M")
        lines.append(f"{start} — {end} ({session.duration_minutes:.0f} мин)")
    return "\n".join(lines)


def build_tracker_handlers(tracker, insight_client, live_source, logger):
    settings_provider = tracker.settings_provider

    async def reply_status(update: Update) -> None:
        snapshot = tracker.snapshot()
        await update.effective_message.reply_text(
            format_status(snapshot, tracker.clock()),
            reply_markup=main_menu_keyboard(snapshot.is_working),
        )

    async def start_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not await ensure_owner(update, context, logger):
            return
        context.user_data[MODE_KEY] = MODE_IDLE
        await update.effective_message.reply_text(
            "Привет! Я веду учёт рабочего времени: вручную кнопкой или автоматически по геозоне.\n"
            "Включите трансляцию геопозиции в этот чат, чтобы работал автоучёт.",
            reply_markup=main_menu_keyboard(tracker.session_store.is_working),
        )
        if settings_provider.current().work_location is None:
            await update.effective_message.reply_text("Рабочее место ещё не задано: /setwork")

    async def status_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not await ensure_owner(update, context, logger):
            return
        await reply_status(update)

    async def toggle_work(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not await ensure_owner(update, context, logger):
            return
        session = tracker.toggle()
        logger.info("MANUAL_TOGGLE user=%s state=%s", update.effective_user.id, tracker.session_store.state)
        if session is None:
            await reply_status(update)
            return
        if session.is_open:
            text = "🟢 Работа начата."
        else:
            text = f"🔴 Работа завершена. Длительность: {format_duration(session.duration_minutes * 60000)}"
        await update.effective_message.reply_text(
            text,
            reply_markup=main_menu_keyboard(tracker.session_store.is_working),
        )

    async def report_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not await ensure_owner(update, context, logger):
            return
        snapshot = tracker.snapshot()
        await update.effective_message.reply_text(
            format_report(snapshot.sessions, tracker.clock(), snapshot.active_session_start)
        )

    async def insight_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not await ensure_owner(update, context, logger):
            return
        status_message = await update.effective_message.reply_text("⏳ Готовим сводку...")
        text = await insight_client.generate_work_insight(tracker.session_store.sessions)
        await status_message.edit_text(text)

    async def history_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not await ensure_owner(update, context, logger):
            return
        await update.effective_message.reply_text(format_history(tracker.snapshot()))

    async def settings_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not await ensure_owner(update, context, logger):
            return
        settings = settings_provider.current()
        await update.effective_message.reply_text(format_settings(settings), reply_markup=settings_keyboard(settings))

    async def save_work_location(message, coordinate: Coordinate) -> None:
        settings_provider.update(work_location=coordinate)
        logger.info("WORK_LOCATION_SET lat=%.6f lon=%.6f", coordinate.latitude, coordinate.longitude)
        await message.reply_text(
            f"📌 Рабочее место сохранено: {coordinate.latitude:.6f}, {coordinate.longitude:.6f}",
            reply_markup=main_menu_keyboard(tracker.session_store.is_working),
        )

    async def setwork_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not await ensure_owner(update, context, logger):
            return
        msg = update.effective_message
        args = context.args or []
        if args:
            coordinate = parse_coordinate(args)
            if coordinate is None:
                await msg.reply_text("Формат: /setwork <широта> <долгота>")
                return
            context.user_data[MODE_KEY] = MODE_IDLE
            await save_work_location(msg, coordinate)
            return

        if tracker.current_location is not None:
            context.user_data[MODE_KEY] = MODE_IDLE
            await save_work_location(msg, tracker.current_location)
            return

        context.user_data[MODE_KEY] = MODE_AWAITING_WORK_LOCATION
        await msg.reply_text(
            "Геопозиция ещё не получена. Отправьте её с рабочего места кнопкой ниже.",
            reply_markup=main_menu_keyboard(tracker.session_store.is_working),
        )

    async def radius_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not await ensure_owner(update, context, logger):
            return
        args = context.args or []
        radius = parse_radius(args[0]) if args else None
        if radius is None:
            await update.effective_message.reply_text("Формат: /radius <метры>, например /radius 200")
            return
        settings = settings_provider.update(radius_meters=radius)
        await update.effective_message.reply_text(f"Радиус геозоны: {settings.radius_meters:.0f} м")

    async def autolog_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not await ensure_owner(update, context, logger):
            return
        args = [a.lower() for a in (context.args or [])]
        if args and args[0] in {"on", "вкл", "1"}:
            enabled = True
        elif args and args[0] in {"off", "выкл", "0"}:
            enabled = False
        else:
            enabled = not settings_provider.current().auto_log
        settings_provider.update(auto_log=enabled)
        await update.effective_message.reply_text(f"Автоучёт по геозоне: {'вкл' if enabled else 'выкл'}")

    async def settings_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        query = update.callback_query
        if not query or not query.message:
            return
        if not await ensure_owner(update, context, logger):
            return
        await query.answer()

        if query.data == "set_work_here":
            if tracker.current_location is None:
                context.user_data[MODE_KEY] = MODE_AWAITING_WORK_LOCATION
                await query.message.reply_text("Ждём геопозицию: отправьте её с рабочего места.")
                return
            await save_work_location(query.message, tracker.current_location)
        elif query.data == "toggle_autolog":
            settings_provider.update(auto_log=not settings_provider.current().auto_log)

        settings = settings_provider.current()
        await query.message.edit_text(format_settings(settings), reply_markup=settings_keyboard(settings))

    async def handle_location_message(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        message = update.effective_message
        user = update.effective_user
        if not message or not message.location or not user:
            return
        if not await ensure_owner(update, context, logger):
            return

        coordinate = Coordinate(latitude=message.location.latitude, longitude=message.location.longitude)
        logger.debug(
            "LOCATION_UPDATE user=%s edited=%s live_period=%s",
            user.id,
            bool(update.edited_message),
            message.location.live_period,
        )
        if live_source is not None:
            # правка live-локации без live_period: пользователь прекратил трансляцию
            if update.edited_message and message.location.live_period is None:
                live_source.stop_sharing()
                return
            live_source.push(coordinate)

        if context.user_data.get(MODE_KEY) == MODE_AWAITING_WORK_LOCATION:
            context.user_data[MODE_KEY] = MODE_IDLE
            await save_work_location(message, coordinate)

    return [
        CommandHandler("start", start_command),
        CommandHandler("status", status_command),
        CommandHandler("toggle", toggle_work),
        CommandHandler("report", report_command),
        CommandHandler("insight", insight_command),
        CommandHandler("history", history_command),
        CommandHandler("settings", settings_command),
        CommandHandler("setwork", setwork_command),
        CommandHandler("radius", radius_command),
        CommandHandler("autolog", autolog_command),
        MessageHandler(filters.Regex(f"^({re.escape(BTN_START_WORK)}|{re.escape(BTN_STOP_WORK)})$"), toggle_work),
        MessageHandler(filters.Regex(f"^{re.escape(BTN_STATUS)}$"), status_command),
        MessageHandler(filters.Regex(f"^{re.escape(BTN_REPORT)}$"), report_command),
        MessageHandler(filters.Regex(f"^{re.escape(BTN_INSIGHT)}$"), insight_command),
        MessageHandler(filters.Regex(f"^{re.escape(BTN_SETTINGS)}$"), settings_command),
        CallbackQueryHandler(settings_callback, pattern=r"^(set_work_here|toggle_autolog)$"),
        MessageHandler(filters.UpdateType.MESSAGE & filters.LOCATION, handle_location_message),
        MessageHandler(filters.UpdateType.EDITED_MESSAGE & filters.LOCATION, handle_location_message),
    ]
