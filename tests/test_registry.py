"""
Tests for the state store and the processed-invoice registry.
"""
import json
from datetime import datetime, timedelta

import pytest

from morrisons_edi.storage.registry import ProcessedInvoiceRegistry
from morrisons_edi.storage.state import (
    DEFAULT_LAST_RUN,
    PROCESSED_INVOICES_KEY,
    STATE_PATH_ENV,
    StateStore,
    StateStoreError,
    default_state_path,
)


class TestStateStore:

    def test_missing_file_is_empty(self, state):
        assert state.get('anything') is None
        assert state.last_run_date() == DEFAULT_LAST_RUN
        assert state.edi_config() == {}

    def test_values_persist(self, tmp_path):
        path = tmp_path / 'nested' / 'state.json'
        StateStore(path).set('ediConfig', {'senderGLN': '5012345000001'})

        assert StateStore(path).edi_config() == {'senderGLN': '5012345000001'}
        assert not (tmp_path / 'nested' / 'state.json.tmp').exists()

    def test_delete_and_has(self, state):
        state.set('key', 1)
        assert state.has('key')

        state.delete('key')

        assert not state.has('key')

    def test_corrupt_file(self, tmp_path):
        path = tmp_path / 'state.json'
        path.write_text('{not json', encoding='utf-8')

        with pytest.raises(StateStoreError):
            StateStore(path)

    def test_non_object_file(self, tmp_path):
        path = tmp_path / 'state.json'
        path.write_text('[1, 2]', encoding='utf-8')

        with pytest.raises(StateStoreError):
            StateStore(path)

    def test_path_from_environment(self, monkeypatch, tmp_path):
        monkeypatch.setenv(STATE_PATH_ENV, str(tmp_path / 'custom.json'))
        assert default_state_path() == tmp_path / 'custom.json'


class TestRegistry:
    """Test suite for processed invoice bookkeeping"""

    def test_mark_is_idempotent(self, registry):
        assert registry.mark_processed('inv-1')
        assert not registry.mark_processed('inv-1')

        assert registry.is_processed('inv-1')
        assert len(registry) == 1

    def test_ids_are_strings(self, registry):
        registry.mark_processed(42)

        assert registry.is_processed('42')
        assert 42 in registry

    def test_survives_restart(self, state):
        ProcessedInvoiceRegistry(state).mark_processed('inv-1')

        reloaded = ProcessedInvoiceRegistry(StateStore(state.path))

        assert reloaded.is_processed('inv-1')

    def test_persisted_shape(self, registry, state):
        registry.mark_processed('inv-1')

        data = json.loads(state.path.read_text(encoding='utf-8'))[PROCESSED_INVOICES_KEY]

        assert data['invoiceIds'] == ['inv-1']
        assert data['version'] == '1.0'
        assert data['lastUpdated']

    def test_failed_write_leaves_registry_unchanged(self, registry, monkeypatch):
        registry.mark_processed('inv-1')

        def fail(key, value):
            raise StateStoreError('disk full')

        monkeypatch.setattr(registry.store, 'set', fail)

        with pytest.raises(StateStoreError):
            registry.mark_processed('inv-2')

        assert not registry.is_processed('inv-2')
        assert registry.stats()['totalProcessed'] == 1

        monkeypatch.undo()
        assert registry.mark_processed('inv-2')

    def test_stats(self, registry):
        empty = registry.stats()
        assert empty['totalProcessed'] == 0
        assert empty['lastUpdated'] == 'Never'
        assert empty['firstProcessedId'] is None

        for invoice_id in ('a', 'b', 'c'):
            registry.mark_processed(invoice_id)

        stats = registry.stats()
        assert stats['totalProcessed'] == 3
        assert stats['firstProcessedId'] == 'a'
        assert stats['lastProcessedId'] == 'c'

    def test_clear_keeps_most_recent(self, registry):
        for invoice_id in ('a', 'b', 'c', 'd'):
            registry.mark_processed(invoice_id)

        result = registry.clear(keep_recent=2)

        assert result == {'cleared': 2, 'remaining': 2, 'originalCount': 4}
        assert not registry.is_processed('a')
        assert registry.is_processed('d')

    def test_clear_everything(self, registry):
        registry.mark_processed('a')

        assert registry.clear()['remaining'] == 0
        assert len(registry) == 0

    def test_cleanup_runs_once_a_day(self, state):
        state.set(PROCESSED_INVOICES_KEY, {'invoiceIds': ['a', 'a', '', 'b']})
        registry = ProcessedInvoiceRegistry(state)
        now = datetime(2024, 3, 15, 12, 0, 0)

        assert registry.cleanup(now)
        assert len(registry) == 2
        assert not registry.cleanup(now + timedelta(hours=23))
        assert registry.cleanup(now + timedelta(days=1, minutes=1))

    def test_export(self, registry):
        registry.mark_processed('b')
        registry.mark_processed('a')

        exported = registry.export()

        assert exported['processedInvoiceIds'] == ['a', 'b']
        assert exported['meta']['totalProcessed'] == 2
        assert exported['exportedAt']
