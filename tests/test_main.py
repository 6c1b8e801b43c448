"""
Tests for the command-line interface.
"""
import json
import sys

import pytest

from morrisons_edi.main import main


@pytest.fixture
def cli(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    state_path = tmp_path / 'state.json'

    def _run(*argv):
        monkeypatch.setattr(sys, 'argv', ['morrisons-edi', '--state', str(state_path), *argv])
        return main()
    return _run


@pytest.fixture
def bundle(tmp_path, invoice_data, items_data, sale_order_data):
    path = tmp_path / 'bundle.json'
    path.write_text(json.dumps({
        'invoice': invoice_data,
        'items': items_data,
        'saleOrder': sale_order_data,
    }), encoding='utf-8')
    return path


@pytest.fixture
def config_file(tmp_path, edi_config):
    path = tmp_path / 'config.json'
    path.write_text(json.dumps(edi_config), encoding='utf-8')
    return path


@pytest.fixture
def lookup_file(tmp_path):
    path = tmp_path / 'stores.csv'
    path.write_text(
        "store,gln,address,name\n42,5010251000042,SOMERVILLE ROAD:LEEDS::LS1 2AB,LEEDS STORE\n",
        encoding='utf-8'
    )
    return path


class TestBuildCommand:

    def test_build_ready_to_send(self, cli, capsys, bundle, config_file, lookup_file):
        code = cli('build', str(bundle), '--config', str(config_file), '--lookup', str(lookup_file))

        out = capsys.readouterr().out
        assert code == 0
        assert 'READY TO SEND' in out
        assert "LIN+1++SKU-1:EN'" in out
        assert "NAD+DP+5010251000042::9+LEEDS STORE:SOMERVILLE ROAD:LEEDS::LS1 2AB'" in out

    def test_build_held(self, cli, capsys, tmp_path, bundle, edi_config):
        config = dict(edi_config)
        config.pop('supplierVAT')
        path = tmp_path / 'partial.json'
        path.write_text(json.dumps(config), encoding='utf-8')

        code = cli('build', str(bundle), '--config', str(path))

        out = capsys.readouterr().out
        assert code == 1
        assert 'HELD - contains undefined data' in out
        assert 'config.supplierVAT' in out

    def test_build_to_file(self, cli, tmp_path, bundle, config_file, lookup_file):
        output = tmp_path / 'out.edi'

        cli('build', str(bundle), '-c', str(config_file), '-l', str(lookup_file), '-o', str(output))

        assert output.read_text(encoding='utf-8').startswith('UNB+UNOA:3+')


class TestRegistryCommand:

    def test_mark_and_check(self, cli, capsys):
        assert cli('registry', 'check', 'inv-1') == 1
        assert cli('registry', 'mark', 'inv-1') == 0
        assert cli('registry', 'check', 'inv-1') == 0

        out = capsys.readouterr().out
        assert 'Invoice inv-1: processed' in out

    def test_stats(self, cli, capsys):
        cli('registry', 'mark', 'inv-1')
        capsys.readouterr()

        cli('registry', 'stats')

        assert json.loads(capsys.readouterr().out)['totalProcessed'] == 1


class TestCredentialsCommand:

    def test_status_without_credentials(self, cli, capsys):
        assert cli('credentials', 'status') == 0

        out = capsys.readouterr().out
        assert 'API: not configured' in out
        assert 'FTP: not configured' in out

    def test_invalid_api_credentials(self, cli):
        code = cli('credentials', 'set-api', '--client-id', 'abc',
                   '--account-key', 'account-0001', '--secret-key', 'sk_live_abcdefghijklmnop')
        assert code == 1

    def test_run_requires_api_credentials(self, cli):
        assert cli('run') == 1


def test_no_command_prints_help(cli, capsys):
    assert cli() == 1
    assert 'usage' in capsys.readouterr().out
