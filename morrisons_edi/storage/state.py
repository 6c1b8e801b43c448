"""
File-backed key/value store for persisted run state.

All state (EDI config, last run date, processed invoice ids, encrypted
credentials, store lookup rows) lives in one JSON document.
"""
import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, Dict, Optional, Union

logger = logging.getLogger(__name__)

STATE_PATH_ENV = 'MORRISONS_EDI_STATE'
DEFAULT_STATE_PATH = Path.home() / '.config' / 'morrisons-edi' / 'config.json'

# Persisted keys
EDI_CONFIG_KEY = 'ediConfig'
LAST_RUN_KEY = 'lastInvoiceRunDate'
PROCESSED_INVOICES_KEY = 'processedInvoices'
STORE_LOOKUP_KEY = 'storeLookup'

DEFAULT_LAST_RUN = '1970-01-01T00:00:00'


class StateStoreError(Exception):
    """Raised when the state file cannot be read or written"""
    pass


def default_state_path() -> Path:
    override = os.environ.get(STATE_PATH_ENV)
    return Path(override) if override else DEFAULT_STATE_PATH


class StateStore:
    """
    JSON document with get/set/delete access.

    Every write rewrites the whole file through a temporary sibling and an
    atomic rename, so a crash never leaves a half-written state file.
    """

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self.path = Path(path) if path else default_state_path()
        self._lock = threading.RLock()
        self._data: Dict[str, Any] = self._read()

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}

        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StateStoreError(f"Cannot read state file {self.path}: {str(e)}") from e

        if not isinstance(data, dict):
            raise StateStoreError(f"State file {self.path} does not contain an object")
        return data

    def _write(self):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + '.tmp')
        try:
            with open(tmp_path, 'w', encoding='utf-8') as f:
                json.dump(self._data, f, indent=2, default=str)
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise StateStoreError(f"Cannot write state file {self.path}: {str(e)}") from e

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._data.get(key, default)

    def set(self, key: str, value: Any):
        with self._lock:
            self._data[key] = value
            self._write()

    def delete(self, key: str):
        with self._lock:
            if key in self._data:
                del self._data[key]
                self._write()

    def has(self, key: str) -> bool:
        with self._lock:
            return key in self._data

    def reload(self):
        with self._lock:
            self._data = self._read()

    # Convenience accessors for the well-known keys

    def last_run_date(self) -> str:
        return self.get(LAST_RUN_KEY) or DEFAULT_LAST_RUN

    def set_last_run_date(self, value: str):
        self.set(LAST_RUN_KEY, value)

    def edi_config(self) -> Dict[str, Any]:
        return self.get(EDI_CONFIG_KEY) or {}
