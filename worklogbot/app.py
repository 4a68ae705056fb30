from telegram import BotCommand
from telegram.ext import Application

from worklogbot import config
from worklogbot.geo_sampler import GeoSampler, HttpLocationSource, LiveLocationSource
from worklogbot.guards import OWNER_CHAT_ID_KEY
from worklogbot.handlers_tracker import build_tracker_handlers, main_menu_keyboard
from worklogbot.insight_client import InsightClient
from worklogbot.reports import format_duration
from worklogbot.session_store import SessionStore
from worklogbot.settings_provider import SettingsProvider
from worklogbot.storage import KeyValueStore
from worklogbot.tracker import TRANSITION_AUTO_START, WorkTracker


def build_location_source(logger):
    if config.LOCATION_SOURCE == "http":
        if not config.LOCATION_API_URL:
            raise RuntimeError("LOCATION_SOURCE=http требует LOCATION_API_URL.")
        return HttpLocationSource(config.LOCATION_API_URL, config.LOCATION_API_KEY, logger)
    if config.LOCATION_SOURCE == "telegram":
        return LiveLocationSource(logger)
    raise RuntimeError(f"Неизвестный LOCATION_SOURCE={config.LOCATION_SOURCE!r} (telegram|http).")


class WorkLogBotApp:
    def __init__(self, logger) -> None:
        self.logger = logger
        if not config.BOT_TOKEN:
            raise RuntimeError("BOT_TOKEN пуст.")

        self.store = KeyValueStore(config.STORE_PATH, logger)
        self.settings_provider = SettingsProvider(self.store, logger)
        self.session_store = SessionStore(self.store, logger)
        self.location_source = build_location_source(logger)
        self.sampler = GeoSampler(self.location_source, logger, timeout_sec=config.GEO_TIMEOUT_SEC)
        self.tracker = WorkTracker(self.session_store, self.settings_provider, self.sampler, logger)
        self.insight_client = InsightClient(config.GEMINI_API_KEY, logger)

        self.application = (
            Application.builder()
            .token(config.BOT_TOKEN)
            .post_init(self._post_init)
            .post_shutdown(self._post_shutdown)
            .build()
        )
        if config.OWNER_USER_ID > 0:
            # в личном чате chat_id совпадает с user_id
            self.application.bot_data[OWNER_CHAT_ID_KEY] = config.OWNER_USER_ID
        self.tracker.add_transition_listener(self._notify_transition)

    async def _post_init(self, app: Application) -> None:
        commands = [
            BotCommand("start", "Открыть меню"),
            BotCommand("status", "Статус и текущая сессия"),
            BotCommand("toggle", "Начать / закончить работу"),
            BotCommand("report", "Отчёт за неделю и месяц"),
            BotCommand("insight", "AI-сводка по сессиям"),
            BotCommand("history", "Последние сессии"),
            BotCommand("settings", "Настройки геозоны"),
        ]
        await app.bot.set_my_commands(commands)

        self.settings_provider.load()
        self.session_store.init()
        self.tracker.start()

    async def _post_shutdown(self, app: Application) -> None:
        await self.tracker.stop()
        await self.location_source.aclose()
        await self.insight_client.aclose()

    async def _notify_transition(self, kind: str, session, distance: float) -> None:
        chat_id = self.application.bot_data.get(OWNER_CHAT_ID_KEY)
        if not chat_id:
            self.logger.warning("OWNER_CHAT_ID_NOT_SET kind=%s", kind)
            return
        if kind == TRANSITION_AUTO_START:
            text = f"🟢 Вы на работе ({round(distance)} м от точки). Сессия начата автоматически."
        else:
            text = (
                f"🔴 Вы покинули рабочую зону ({round(distance)} м). Сессия завершена автоматически.\n"
                f"Длительность: {format_duration(session.duration_minutes * 60000)}"
            )
        await self.application.bot.send_message(
            chat_id=chat_id,
            text=text,
            reply_markup=main_menu_keyboard(self.session_store.is_working),
        )

    def register_handlers(self, app: Application) -> None:
        live_source = self.location_source if isinstance(self.location_source, LiveLocationSource) else None
        for handler in build_tracker_handlers(self.tracker, self.insight_client, live_source, self.logger):
            app.add_handler(handler)

    def run(self) -> None:
        self.register_handlers(self.application)
        print("Bot started (polling). Ctrl+C to stop.")
        self.application.run_polling(
            allowed_updates=["message", "edited_message", "callback_query"],
        )
