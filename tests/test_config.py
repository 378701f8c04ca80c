import importlib

import pytest

from songrec import config


@pytest.fixture
def reload_config(monkeypatch):
    yield lambda: importlib.reload(config)
    # Leave module constants as the clean environment defines them
    monkeypatch.undo()
    importlib.reload(config)


def test_env_overrides_and_validation(monkeypatch, reload_config):
    monkeypatch.setenv("SONGREC_SIMILARITY_THRESHOLD", "0.75")
    monkeypatch.setenv("SONGREC_CONTENT_WEIGHT", "-1")  # should clamp to min
    monkeypatch.setenv("SONGREC_MAX_LIMIT", "0")  # min clamp
    monkeypatch.setenv("SONGREC_TIE_SMOOTHING", "off")

    cfg = reload_config()

    assert cfg.SIMILARITY_THRESHOLD == 0.75
    assert cfg.CONTENT_WEIGHT == 0.0
    assert cfg.MAX_LIMIT == 1
    assert cfg.TIE_SMOOTHING is False


def test_db_path_respects_env(monkeypatch, tmp_path, reload_config):
    db_path = tmp_path / "custom.db"
    monkeypatch.setenv("SONGREC_DB", str(db_path))

    cfg = reload_config()

    assert cfg.DB_PATH == db_path


def test_invalid_env_values_fall_back_to_defaults(monkeypatch, reload_config):
    monkeypatch.setenv("SONGREC_SIMILARITY_THRESHOLD", "not-a-float")
    monkeypatch.setenv("SONGREC_DEFAULT_LIMIT", "bad-int")
    monkeypatch.setenv("SONGREC_TIE_SMOOTHING", "maybe")

    cfg = reload_config()

    assert cfg.SIMILARITY_THRESHOLD == 0.6
    assert cfg.DEFAULT_LIMIT == 10
    assert cfg.TIE_SMOOTHING is True


def test_from_env_snapshots_module_values(monkeypatch, reload_config):
    monkeypatch.setenv("SONGREC_COLLABORATIVE_WEIGHT", "0.25")
    monkeypatch.setenv("SONGREC_DEFAULT_LIMIT", "5")

    cfg = reload_config()
    settings = cfg.RecommenderConfig.from_env()

    assert settings.collaborative_weight == 0.25
    assert settings.default_limit == 5
    assert settings.content_weight == 0.5


def test_recommender_config_is_immutable():
    settings = config.RecommenderConfig()
    with pytest.raises(AttributeError):
        settings.similarity_threshold = 0.1


@pytest.mark.parametrize("kwargs", [
    {"default_limit": 0},
    {"max_limit": -3},
    {"similarity_threshold": -0.1},
    {"collaborative_weight": -1.0},
])
def test_recommender_config_rejects_invalid_values(kwargs):
    with pytest.raises(ValueError):
        config.RecommenderConfig(**kwargs)


@pytest.mark.parametrize("requested, expected", [
    (None, 10),
    (0, 10),
    (-4, 10),
    (5, 5),
    (20, 20),
    (50, 20),
])
def test_bound_limit(requested, expected):
    assert config.RecommenderConfig().bound_limit(requested) == expected
