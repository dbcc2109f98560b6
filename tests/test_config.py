import pytest

from data.store import JsonFileStore
from services.config_service import BotSettings, ConfigService, parse_tickers


def test_parse_tickers():
    assert parse_tickers(" sber, gazp ,,LKOH") == ["SBER", "GAZP", "LKOH"]
    assert parse_tickers(["x"]) == ["X"]
    assert parse_tickers(None) == []


def test_store_overrides_env(tmp_path):
    settings = BotSettings(_env_file=None, TICKERS="SBER", MIN_BARS=20, MOCK_MODE=False)
    service = ConfigService(JsonFileStore(str(tmp_path)), settings)
    assert service.load().tickers == ["SBER"]
    assert service.load().min_bars == 20

    service.update("TICKERS", "GAZP,LKOH")
    service.update("MIN_BARS", "30")
    service.update("MOCK_MODE", "false")
    config = service.load()
    assert config.tickers == ["GAZP", "LKOH"]
    assert config.min_bars == 30
    assert config.mock_mode is False


def test_unknown_setting_rejected(tmp_path):
    service = ConfigService(JsonFileStore(str(tmp_path)), BotSettings(_env_file=None))
    with pytest.raises(ValueError):
        service.update("NOT_A_SETTING", 1)


def test_defaults(tmp_path):
    config = ConfigService(JsonFileStore(str(tmp_path)), BotSettings(_env_file=None)).load()
    assert config.donchian_length == 50
    assert config.local_length == 1
    assert config.retest_tolerance == 0.002
    assert config.take_profit_pct == 2.0
    assert config.stop_loss_pct == 0.5
    assert config.track_interval_seconds == 60


@pytest.mark.parametrize(
    "key, value",
    [("DONCHIAN_LENGTH", "fifty"), ("TRACK_INTERVAL_SECONDS", "0"), ("STOP_LOSS_PCT", "-1"), ("TICKERS", " , ")],
)
def test_invalid_value_rejected_before_storing(tmp_path, key, value):
    store = JsonFileStore(str(tmp_path))
    service = ConfigService(store, BotSettings(_env_file=None))
    with pytest.raises(ValueError):
        service.update(key, value)
    assert store.read("settings") == []
    assert service.load().donchian_length == 50


def test_startup_settings_not_changeable(tmp_path):
    service = ConfigService(JsonFileStore(str(tmp_path)), BotSettings(_env_file=None))
    for key in ("TELEGRAM_BOT_TOKEN", "DATABASE_URL", "STORAGE"):
        with pytest.raises(ValueError):
            service.update(key, "x")


def test_update_stores_coerced_value(tmp_path):
    store = JsonFileStore(str(tmp_path))
    service = ConfigService(store, BotSettings(_env_file=None))
    assert service.update("DONCHIAN_LENGTH", "40") == 40
    assert store.get_setting("DONCHIAN_LENGTH") == 40
    assert service.update("TICKERS", "sber, gazp") == ["SBER", "GAZP"]


def test_bad_stored_value_falls_back_to_env(tmp_path):
    store = JsonFileStore(str(tmp_path))
    store.set_setting("DONCHIAN_LENGTH", "fifty")
    config = ConfigService(store, BotSettings(_env_file=None, DONCHIAN_LENGTH=30)).load()
    assert config.donchian_length == 30
