from config import Config


def test_defaults(monkeypatch):
    for key in ("SCENARIO_CACHE_TTL", "GENERATOR_MAX_RETRIES", "GENERATOR_BASE_DELAY", "OVERVIEW_MAX_LIMIT"):
        monkeypatch.delenv(key, raising=False)

    config = Config()

    assert config.SCENARIO_CACHE_TTL == 300
    assert config.GENERATOR_MAX_RETRIES == 2
    assert config.GENERATOR_BASE_DELAY == 0.5
    assert config.OVERVIEW_MAX_LIMIT == 1000
    assert config.get("NOT_A_SETTING", "x") == "x"


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("GENERATOR_MAX_RETRIES", "4")
    monkeypatch.setenv("PROFILE_CACHE_SIZE", "12")

    config = Config()

    assert config.GENERATOR_MAX_RETRIES == 4
    assert config.PROFILE_CACHE_SIZE == 12


def test_to_dict_masks_secrets(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-secret")
    monkeypatch.setenv("DB_DSN", "postgresql://user:pw@db/atlas")

    data = Config().to_dict()

    assert data["OPENAI_API_KEY"] == "***"
    assert data["DB_DSN"] == "***"
    assert "sk-secret" not in str(Config())


def test_database_url_is_read_and_masked(monkeypatch):
    monkeypatch.delenv("DB_DSN", raising=False)
    monkeypatch.setenv("DATABASE_URL", "postgresql://user:pw@db/atlas")

    config = Config()

    assert config.get("DATABASE_URL") == "postgresql://user:pw@db/atlas"
    assert config.to_dict()["DATABASE_URL"] == "***"
