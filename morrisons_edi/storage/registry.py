"""
Processed-invoice registry.

Keeps the ids of every successfully transmitted invoice so later runs never
send them again. The id list and its metadata are persisted in the state store.
"""
import logging
import threading
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from morrisons_edi.storage.state import PROCESSED_INVOICES_KEY, StateStore

logger = logging.getLogger(__name__)

REGISTRY_VERSION = '1.0'
CLEANUP_INTERVAL = timedelta(days=1)


class ProcessedInvoiceRegistry:
    """
    Set of processed invoice ids, in the order they were first marked.

    ``mark_processed`` is idempotent: the first call for an id returns True,
    every later call returns False and leaves the registry unchanged.
    """

    def __init__(self, store: StateStore):
        self.store = store
        self._lock = threading.Lock()

        data = store.get(PROCESSED_INVOICES_KEY) or {}
        self._ids: List[str] = []
        self._members = set()
        for invoice_id in data.get('invoiceIds') or []:
            key = str(invoice_id)
            if key not in self._members:
                self._ids.append(key)
                self._members.add(key)

        self.last_updated: Optional[str] = data.get('lastUpdated')
        self.last_cleanup: Optional[str] = data.get('lastCleanup')

    def _save(self, ids: Optional[List[str]] = None, last_updated: Optional[str] = None):
        self.store.set(PROCESSED_INVOICES_KEY, {
            'invoiceIds': list(self._ids if ids is None else ids),
            'lastUpdated': last_updated or self.last_updated,
            'lastCleanup': self.last_cleanup,
            'version': REGISTRY_VERSION,
        })

    def is_processed(self, invoice_id: Any) -> bool:
        with self._lock:
            return str(invoice_id) in self._members

    def mark_processed(self, invoice_id: Any) -> bool:
        """
        Returns True if the id was not registered before.

        The id is written to the state file first and only then added in
        memory, so a failed write leaves the registry unchanged.

        Raises:
            StateStoreError: the state file could not be written
        """
        key = str(invoice_id)
        with self._lock:
            if key in self._members:
                logger.debug(f"Invoice {key} already registered as processed")
                return False

            updated = datetime.now().isoformat()
            self._save(self._ids + [key], updated)

            self._ids.append(key)
            self._members.add(key)
            self.last_updated = updated

        logger.info(f"Invoice {key} registered as processed")
        return True

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'totalProcessed': len(self._ids),
                'lastUpdated': self.last_updated or 'Never',
                'lastCleanup': self.last_cleanup or 'Never',
                'version': REGISTRY_VERSION,
                'firstProcessedId': self._ids[0] if self._ids else None,
                'lastProcessedId': self._ids[-1] if self._ids else None,
            }

    def clear(self, keep_recent: int = 0) -> Dict[str, int]:
        """Forget every id except the ``keep_recent`` most recently marked"""
        with self._lock:
            original_count = len(self._ids)
            kept = self._ids[-keep_recent:] if keep_recent > 0 else []

            self._ids = list(kept)
            self._members = set(kept)
            self.last_updated = datetime.now().isoformat()
            self._save()

        result = {
            'cleared': original_count - len(kept),
            'remaining': len(kept),
            'originalCount': original_count,
        }
        logger.info(
            f"Cleared {result['cleared']} processed invoice ids, "
            f"{result['remaining']} kept"
        )
        return result

    def cleanup(self, now: Optional[datetime] = None) -> bool:
        """
        Housekeeping pass, at most once per day.

        Drops duplicate or blank ids left by older state files. Returns True
        if the pass ran.
        """
        now = now or datetime.now()
        with self._lock:
            if self.last_cleanup:
                try:
                    last = datetime.fromisoformat(self.last_cleanup)
                except ValueError:
                    last = None
                if last is not None and now - last < CLEANUP_INTERVAL:
                    return False

            seen = set()
            cleaned = []
            for invoice_id in self._ids:
                if invoice_id and invoice_id not in seen:
                    cleaned.append(invoice_id)
                    seen.add(invoice_id)

            removed = len(self._ids) - len(cleaned)
            self._ids = cleaned
            self._members = seen
            self.last_cleanup = now.isoformat()
            self._save()

        logger.info(f"Processed invoice cleanup complete, {removed} entries removed")
        return True

    def export(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'meta': {
                    'totalProcessed': len(self._ids),
                    'lastUpdated': self.last_updated,
                    'lastCleanup': self.last_cleanup,
                    'version': REGISTRY_VERSION,
                },
                'processedInvoiceIds': sorted(self._ids),
                'exportedAt': datetime.now().isoformat(),
            }

    def __contains__(self, invoice_id: Any) -> bool:
        return self.is_processed(invoice_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._ids)
