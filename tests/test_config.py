import pytest

from filevault.config import config_manager
from filevault.config.config_manager import deep_merge, interpolate_env_vars, reload_app_config
from filevault.config.env_settings import TierEnvSettings


TIER_VARIABLES = (
    "ENABLE_REDIS_CACHE", "REDIS_URL", "ENABLE_ELASTICSEARCH",
    "ELASTICSEARCH_URL", "ELASTICSEARCH_INDEX", "DATABASE_URL",
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in TIER_VARIABLES:
        monkeypatch.delenv(name, raising=False)
    yield monkeypatch
    config_manager.get_app_config.cache_clear()


def test_unset_variables_produce_no_overrides(clean_env):
    assert TierEnvSettings().as_overrides() == {}


@pytest.mark.parametrize("raw, enabled", [("true", True), ("TRUE", False), ("1", False), ("", False)])
def test_tier_flags_accept_only_literal_true(clean_env, raw, enabled):
    clean_env.setenv("ENABLE_REDIS_CACHE", raw)
    clean_env.setenv("ENABLE_ELASTICSEARCH", raw)

    overrides = TierEnvSettings().as_overrides()

    assert overrides["redis"]["enabled"] is enabled
    assert overrides["elasticsearch"]["enabled"] is enabled


def test_yaml_defaults_keep_both_tiers_disabled(clean_env):
    config = reload_app_config()

    assert config.redis.enabled is False
    assert config.elasticsearch.enabled is False
    assert config.elasticsearch.index == "files"
    assert config.redis.ttl_seconds == 3600
    assert config.loader.prefetch_page_multiplier == 2


def test_environment_overrides_yaml(clean_env):
    clean_env.setenv("ENABLE_REDIS_CACHE", "true")
    clean_env.setenv("REDIS_URL", "redis://cache:6379/2")
    clean_env.setenv("ENABLE_ELASTICSEARCH", "true")
    clean_env.setenv("ELASTICSEARCH_URL", "http://search:9200")
    clean_env.setenv("ELASTICSEARCH_INDEX", "vault-files")

    config = reload_app_config()

    assert config.redis.enabled is True
    assert config.redis.url == "redis://cache:6379/2"
    assert config.redis.ttl_seconds == 3600
    assert config.elasticsearch.enabled is True
    assert config.elasticsearch.url == "http://search:9200"
    assert config.elasticsearch.index == "vault-files"


def test_interpolate_env_vars(monkeypatch):
    monkeypatch.setenv("FV_HOST", "db.internal")

    data = interpolate_env_vars({"url": "postgres://${FV_HOST}/x", "flags": ["true", "False", "other"]})

    assert data == {"url": "postgres://db.internal/x", "flags": [True, False, "other"]}


def test_deep_merge_prefers_source():
    merged = deep_merge({"redis": {"enabled": True}}, {"redis": {"enabled": False, "url": "u"}, "x": 1})

    assert merged == {"redis": {"enabled": True, "url": "u"}, "x": 1}
