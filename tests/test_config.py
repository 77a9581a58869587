import pytest

from quarry.config import ConfigurationError, Settings, configure, get_settings, reset_settings


@pytest.fixture(autouse=True)
def fresh_settings():
    reset_settings()
    yield
    reset_settings()


def test_defaults():
    settings = Settings.from_env({})
    assert settings.slow_query_ms == 200
    assert settings.n_plus_one_threshold == 5
    assert settings.strict_audit_fields is False
    assert settings.clear_after_bulk is False


def test_from_env_parses_values():
    settings = Settings.from_env(
        {
            "QUARRY_SLOW_QUERY_MS": "50",
            "QUARRY_N_PLUS_ONE_THRESHOLD": "3",
            "QUARRY_STRICT_AUDIT_FIELDS": "yes",
            "QUARRY_CLEAR_AFTER_BULK": "off",
            "QUARRY_UNRELATED": "ignored",
        }
    )
    assert settings == Settings(slow_query_ms=50, n_plus_one_threshold=3, strict_audit_fields=True)


def test_empty_values_keep_defaults():
    assert Settings.from_env({"QUARRY_SLOW_QUERY_MS": ""}).slow_query_ms == 200


@pytest.mark.parametrize(
    "environ",
    [{"QUARRY_SLOW_QUERY_MS": "fast"}, {"QUARRY_CLEAR_AFTER_BULK": "maybe"}],
)
def test_bad_values_raise(environ):
    with pytest.raises(ConfigurationError):
        Settings.from_env(environ)


def test_get_settings_reads_process_environment(monkeypatch):
    monkeypatch.setenv("QUARRY_N_PLUS_ONE_THRESHOLD", "9")
    assert get_settings().n_plus_one_threshold == 9
    monkeypatch.setenv("QUARRY_N_PLUS_ONE_THRESHOLD", "2")
    assert get_settings().n_plus_one_threshold == 9


def test_configure_overrides_and_reset(monkeypatch):
    monkeypatch.delenv("QUARRY_CLEAR_AFTER_BULK", raising=False)
    updated = configure(clear_after_bulk=True)
    assert updated.clear_after_bulk is True
    assert get_settings() is updated

    reset_settings()
    assert get_settings().clear_after_bulk is False


def test_configure_rejects_unknown_settings():
    with pytest.raises(TypeError):
        configure(cache_size=10)
