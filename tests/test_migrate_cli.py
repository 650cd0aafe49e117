"""Tests for the command-line entry point."""

import sys
from unittest.mock import patch

import pytest

import migrate
from config_loader import ENV_VARS, FALLBACK_WIKI_ENV_VAR
from confluence_client import ConfluenceAuthError


@pytest.fixture(autouse=True)
def isolated(tmp_path, monkeypatch):
    for name in list(ENV_VARS) + [FALLBACK_WIKI_ENV_VAR]:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


def run(monkeypatch, *argv):
    monkeypatch.setattr(sys, 'argv', ['migrate.py', *argv])
    return migrate.main()


def test_parser_reads_migrate_options():
    args = migrate.create_argument_parser().parse_args(
        ['-vv', 'migrate', '--single', 'Getting Started', '--parent', '42', '--auto-fix', '--clean']
    )

    assert args.command == 'migrate'
    assert args.single == 'Getting Started'
    assert args.parent == '42'
    assert args.auto_fix and args.clean
    assert args.verbose == 2


def test_command_is_required():
    with pytest.raises(SystemExit):
        migrate.create_argument_parser().parse_args([])


def test_local_preview_end_to_end(tmp_path, monkeypatch):
    wiki = tmp_path / 'wiki'
    (wiki / 'Guide').mkdir(parents=True)
    (wiki / 'Guide' / 'Install.md').write_text('# Install', encoding='utf-8')

    code = run(monkeypatch, '--output', str(tmp_path / 'out'), 'local', '--wiki-path', str(wiki))

    assert code == 0
    assert (tmp_path / 'out' / 'install.html').exists()


def test_missing_explicit_config_file(monkeypatch, capsys):
    code = run(monkeypatch, '--config', 'nope.yaml', 'validate')

    assert code == 2
    assert 'nope.yaml' in capsys.readouterr().err


def test_missing_settings_are_configuration_errors(monkeypatch, capsys):
    code = run(monkeypatch, 'validate')

    assert code == 2
    assert 'Missing required configuration' in capsys.readouterr().err


def test_conflicts_exit_with_one(tmp_path, monkeypatch):
    monkeypatch.setenv('WIKI_ROOT_DIR', str(tmp_path))
    report = {'command': 'fix-names', 'summary': {'status': 'conflicts'}, 'conflicts': []}

    with patch.object(migrate.MigrationOrchestrator, 'fix_names', return_value=report):
        assert run(monkeypatch, 'fix-names') == 1


def test_partial_run_exits_with_zero(tmp_path, monkeypatch):
    monkeypatch.setenv('WIKI_ROOT_DIR', str(tmp_path))
    report = {'command': 'fix-names', 'summary': {'status': 'partial'}}

    with patch.object(migrate.MigrationOrchestrator, 'fix_names', return_value=report):
        assert run(monkeypatch, 'fix-names') == 0


@pytest.mark.parametrize('error, expected', [
    (ConfluenceAuthError(401, 'Unauthorized'), 1),
    (KeyboardInterrupt(), 130),
    (RuntimeError('boom'), 1),
])
def test_errors_map_to_exit_codes(tmp_path, monkeypatch, error, expected):
    monkeypatch.setenv('WIKI_ROOT_DIR', str(tmp_path))

    with patch.object(migrate.MigrationOrchestrator, 'fix_names', side_effect=error):
        assert run(monkeypatch, 'fix-names') == expected
