"""Tests for configuration loading and validation."""

from argparse import Namespace

import pytest

from config_loader import ENV_VARS, FALLBACK_WIKI_ENV_VAR, ConfigLoader, get_nested


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for name in list(ENV_VARS) + [FALLBACK_WIKI_ENV_VAR]:
        monkeypatch.delenv(name, raising=False)


def valid_config(tmp_path):
    config = ConfigLoader.from_environment()
    config['confluence'].update({
        'base_url': 'https://example.atlassian.net',
        'username': 'me',
        'api_token': 'tok',
        'space_key': 'DOC',
        'parent_page_id': '1000',
    })
    config['wiki']['root_dir'] = str(tmp_path)
    return config


class TestLoad:

    def test_yaml_with_substitution_and_defaults(self, tmp_path, monkeypatch):
        monkeypatch.setenv('MY_TOKEN', 'secret')
        path = tmp_path / 'config.yaml'
        path.write_text(
            "confluence:\n"
            "  base_url: https://example.atlassian.net\n"
            "  api_token: ${MY_TOKEN}\n"
            "  username: ${UNSET_VARIABLE}\n",
            encoding='utf-8'
        )

        config = ConfigLoader.load(str(path))

        assert config['confluence']['api_token'] == 'secret'
        assert config['confluence']['username'] == '${UNSET_VARIABLE}'
        assert config['confluence']['context_path'] == '/wiki'
        assert config['migration']['backoff'] == {'retries': 3, 'delay': 1.0}

    def test_environment_fills_empty_keys(self, tmp_path, monkeypatch):
        monkeypatch.setenv('CONFLUENCE_SPACE_KEY', 'ENV')
        monkeypatch.setenv('PROJECT_NAME', 'Proj')
        path = tmp_path / 'config.yaml'
        path.write_text("confluence:\n  space_key: DOC\n  parent_page_id:\n", encoding='utf-8')

        config = ConfigLoader.load(str(path))

        assert config['confluence']['space_key'] == 'DOC'
        assert config['project']['name'] == 'Proj'

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            ConfigLoader.load(str(tmp_path / 'missing.yaml'))

    def test_file_must_be_a_mapping(self, tmp_path):
        path = tmp_path / 'config.yaml'
        path.write_text("- a\n- b\n", encoding='utf-8')

        with pytest.raises(ValueError):
            ConfigLoader.load(str(path))

    def test_from_environment(self, monkeypatch):
        monkeypatch.setenv('CONFLUENCE_BASE_URL', 'https://example.atlassian.net')
        monkeypatch.setenv('OUTPUT_PATH', '/tmp/out')

        config = ConfigLoader.from_environment()

        assert config['confluence']['base_url'] == 'https://example.atlassian.net'
        assert config['local']['output_directory'] == '/tmp/out'


class TestResolvePaths:

    def test_detects_project_wiki_next_to_working_directory(self, tmp_path):
        work = tmp_path / 'tools'
        work.mkdir()
        wiki = tmp_path / 'Proj.wiki'
        (wiki / '.attachments').mkdir(parents=True)
        config = ConfigLoader.from_environment()
        config['project']['name'] = 'Proj'

        resolved = ConfigLoader.resolve_paths(config, cwd=work)

        assert resolved['wiki']['root_dir'] == str(wiki)
        assert resolved['wiki']['attachments_dir'] == str(wiki / '.attachments')
        assert config['wiki']['root_dir'] is None

    def test_fallback_environment_variable(self, tmp_path, monkeypatch):
        monkeypatch.setenv(FALLBACK_WIKI_ENV_VAR, str(tmp_path))

        resolved = ConfigLoader.resolve_paths(ConfigLoader.from_environment(), cwd=tmp_path)

        assert resolved['wiki']['root_dir'] == str(tmp_path)
        assert resolved['wiki']['attachments_dir'] == str(tmp_path / '.attachments')

    def test_attachments_next_to_root(self, tmp_path):
        root = tmp_path / 'wiki'
        root.mkdir()
        (tmp_path / '.attachments').mkdir()
        config = ConfigLoader.from_environment()
        config['wiki']['root_dir'] = str(root)

        resolved = ConfigLoader.resolve_paths(config, cwd=tmp_path)

        assert resolved['wiki']['attachments_dir'] == str(tmp_path / '.attachments')


class TestValidate:

    def test_valid(self, tmp_path):
        ConfigLoader.validate(valid_config(tmp_path))

    def test_local_mode_needs_only_the_wiki(self, tmp_path):
        config = ConfigLoader.from_environment()
        config['wiki']['root_dir'] = str(tmp_path)

        ConfigLoader.validate(config, require_confluence=False)
        with pytest.raises(ValueError, match='confluence.base_url'):
            ConfigLoader.validate(config)

    @pytest.mark.parametrize('path, value, message', [
        ('confluence.base_url', 'ftp://example.com', 'http or https'),
        ('confluence.api_token', '${CONFLUENCE_API_TOKEN}', 'unsubstituted'),
        ('confluence.auth_type', 'oauth', 'auth_type'),
        ('migration.upload_workers', 0, 'upload_workers'),
        ('migration.backoff.retries', True, 'backoff.retries'),
        ('wiki.exclude', 'drafts', 'wiki.exclude'),
    ])
    def test_invalid(self, tmp_path, path, value, message):
        config = valid_config(tmp_path)
        section, _, key = path.rpartition('.')
        get_nested(config, section)[key] = value

        with pytest.raises(ValueError, match=message):
            ConfigLoader.validate(config)


def test_merge_with_args():
    config = ConfigLoader.from_environment()
    args = Namespace(parent='42', wiki_path='/wiki', output='/out', debug=False, verbose=1)

    merged = ConfigLoader.merge_with_args(config, args)

    assert merged['confluence']['parent_page_id'] == '42'
    assert merged['wiki']['root_dir'] == '/wiki'
    assert merged['local']['output_directory'] == '/out'
    assert merged['logging']['level'] == 'INFO'
    assert config['confluence']['parent_page_id'] is None
