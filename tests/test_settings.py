from config.settings import Settings, get_fallback_models


def _settings(**values) -> Settings:
    return Settings(_env_file=None, **values)


def test_fallback_models_take_precedence_over_default():
    settings = _settings(fallback_models="a, b ,c", default_model="solo")
    assert get_fallback_models(settings) == ("a", "b", "c")


def test_default_model_used_when_no_fallback_list():
    settings = _settings(fallback_models="", default_model="solo")
    assert get_fallback_models(settings) == ("solo",)


def test_fallback_models_drop_blanks_and_duplicates():
    settings = _settings(fallback_models="a,,b,a, ")
    assert get_fallback_models(settings) == ("a", "b")


def test_empty_configuration_gives_empty_chain():
    assert get_fallback_models(_settings(fallback_models="", default_model="")) == ()


def test_documented_defaults():
    settings = _settings()
    assert settings.model_recovery_seconds == 300
    assert settings.cache_ttl_seconds == 300
    assert settings.cache_max_entries == 1000
    assert settings.deduplication_window_ms == 5000
    assert settings.max_concurrent_requests == 3
    assert settings.throttle_delay_ms == 1000
    assert settings.rate_limit_burst_size == 5
    assert settings.rate_limit_requests_per_minute == 30
    assert settings.degraded_word_delay_ms == 50
    assert settings.temperature == 0.7
    assert settings.max_tokens == 2000
    assert settings.port == 8080
