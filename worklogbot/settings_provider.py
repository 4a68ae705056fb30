import json
from dataclasses import replace
from typing import Callable, List

from worklogbot import config
from worklogbot.models import UserSettings

SettingsListener = Callable[[UserSettings], None]


class SettingsProvider:
    def __init__(self, store, logger) -> None:
        self.store = store
        self.logger = logger
        self._settings = UserSettings()
        self._listeners: List[SettingsListener] = []

    def load(self) -> UserSettings:
        raw = self.store.get(config.STORE_KEY_SETTINGS)
        if raw:
            try:
                self._settings = UserSettings.from_dict(json.loads(raw))
            except ValueError as exc:
                self.logger.warning("SETTINGS_LOAD_FAILED error=%s -> defaults", exc)
                self._settings = UserSettings()
        self.logger.info(
            "SETTINGS_LOADED work_location=%s radius_m=%s auto_log=%s",
            self._settings.work_location,
            self._settings.radius_meters,
            self._settings.auto_log,
        )
        return self._settings

    def current(self) -> UserSettings:
        return self._settings

    def subscribe(self, listener: SettingsListener) -> None:
        self._listeners.append(listener)

    def update(self, **changes) -> UserSettings:
        if "radius_meters" in changes:
            radius = float(changes["radius_meters"])
            if radius <= 0:
                raise ValueError("radius_meters must be positive")
            changes["radius_meters"] = radius

        self._settings = replace(self._settings, **changes)
        self.store.set(config.STORE_KEY_SETTINGS, json.dumps(self._settings.to_dict()))
        self.logger.info("SETTINGS_UPDATED fields=%s", ",".join(sorted(changes)))

        for listener in list(self._listeners):
            listener(self._settings)
        return self._settings
