import json
import os
from pathlib import Path
from typing import Dict, Optional


class KeyValueStore:
    """Durable string-keyed storage backed by a single JSON file.

    With ``path=None`` the store lives only in memory. Write failures are
    logged and swallowed: callers keep their in-memory state as the source
    of truth and never wait on or react to persistence errors.
    """

    def __init__(self, path: Optional[str], logger) -> None:
        self.path = Path(path) if path else None
        self.logger = logger
        self._data: Dict[str, str] = {}
        self._load()

    def _load(self) -> None:
        if self.path is None or not self.path.exists():
            return
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            self.logger.warning("STORE_LOAD_FAILED path=%s error=%s", self.path, exc)
            return
        if not isinstance(raw, dict):
            self.logger.warning("STORE_LOAD_BAD_FORMAT path=%s type=%s", self.path, type(raw).__name__)
            return
        self._data = {str(key): value for key, value in raw.items() if isinstance(value, str)}
        self.logger.info("STORE_LOADED path=%s keys=%s", self.path, len(self._data))

    def _flush(self, key: str) -> None:
        if self.path is None:
            return
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            if self.path.parent and not self.path.parent.exists():
                self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(self._data, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp_path, self.path)
        except OSError as exc:
            self.logger.error("STORE_WRITE_FAILED key=%s path=%s error=%s", key, self.path, exc)

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value
        self._flush(key)

    def remove(self, key: str) -> None:
        if self._data.pop(key, None) is not None:
            self._flush(key)
