import os

from mergemaster.env_auth import (
    TOKEN_VARIABLES,
    EnvAuthConfig,
    EnvironmentAuthManager,
    create_env_auth_manager,
)


def _clear_tokens(monkeypatch):
    # setenv first so values exported during the test are removed on teardown
    for var in TOKEN_VARIABLES:
        monkeypatch.setenv(var, "placeholder")
        monkeypatch.delenv(var)


def test_env_auth_config_defaults():
    """Test EnvAuthConfig with defaults."""
    config = EnvAuthConfig()

    assert config.load_dotenv is True
    assert config.dotenv_path is None
    assert config.github_token_var == "MERGEMASTER_GITHUB_TOKEN"


def test_environment_auth_manager_no_token(monkeypatch):
    """Test EnvironmentAuthManager when no token is available."""
    _clear_tokens(monkeypatch)

    manager = EnvironmentAuthManager(EnvAuthConfig(load_dotenv=False))

    assert manager.get_github_token() is None
    assert not manager.configure_github_cli()


def test_token_variable_precedence(monkeypatch):
    _clear_tokens(monkeypatch)
    monkeypatch.setenv("GH_TOKEN", "gh_value")
    monkeypatch.setenv("GITHUB_TOKEN", "github_value")
    manager = EnvironmentAuthManager(EnvAuthConfig(load_dotenv=False))
    assert manager.get_github_token() == "github_value"

    monkeypatch.setenv("MERGEMASTER_GITHUB_TOKEN", "own_value")
    assert manager.get_github_token() == "own_value"


def test_custom_token_variable_wins(monkeypatch):
    _clear_tokens(monkeypatch)
    monkeypatch.setenv("GITHUB_TOKEN", "github_value")
    monkeypatch.setenv("CI_BOT_TOKEN", "bot_value")
    manager = EnvironmentAuthManager(EnvAuthConfig(load_dotenv=False, github_token_var="CI_BOT_TOKEN"))
    assert manager.get_github_token() == "bot_value"


def test_configure_github_cli_exports_gh_token(monkeypatch):
    _clear_tokens(monkeypatch)
    monkeypatch.setenv("GITHUB_TOKEN", "test_token_123")

    manager = EnvironmentAuthManager(EnvAuthConfig(load_dotenv=False))

    assert manager.configure_github_cli()
    assert os.environ["GH_TOKEN"] == "test_token_123"


def test_explicit_token_is_exported(monkeypatch):
    _clear_tokens(monkeypatch)
    manager = EnvironmentAuthManager(EnvAuthConfig(load_dotenv=False))
    assert manager.configure_github_cli("from_config")
    assert os.environ["GH_TOKEN"] == "from_config"


def test_dotenv_file_is_loaded(monkeypatch, tmp_path):
    _clear_tokens(monkeypatch)
    env_file = tmp_path / "custom.env"
    env_file.write_text("MERGEMASTER_GITHUB_TOKEN=dotenv_token\n")

    manager = create_env_auth_manager(EnvAuthConfig(dotenv_path=str(env_file)))

    assert manager.dotenv_loaded
    assert manager.get_github_token() == "dotenv_token"


def test_missing_dotenv_file_is_ignored(tmp_path):
    manager = create_env_auth_manager(EnvAuthConfig(dotenv_path=str(tmp_path / "absent.env")))
    assert not manager.dotenv_loaded
