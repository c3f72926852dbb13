"""
Tests for Settings and service id resolution.
"""
import pytest

from ckfinance.config.config import Settings, env_bool
from ckfinance.config.service_ids import DEFAULT_SERVICE_IDS, load_service_id_overrides, resolve_service_ids


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    for key in ("CKF_NETWORK", "CKF_HOST", "CKF_IDENTITY_URL", "CKF_DEPOSIT_SERVICE_ID",
                "CKF_ORDER_BOOK_SERVICE_ID", "CKF_STATUS_POLL_SEC", "CKF_DETECTION_POLL_SEC",
                "CKF_RPC_TIMEOUT_SEC", "CKF_RPC_RETRIES", "CKF_ALERT_WEBHOOK_TYPE",
                "CKF_ALERT_WEBHOOK_URL", "CKF_LOG_FILE"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("CKF_SERVICE_IDS_FILE", str(tmp_path / "missing.yaml"))
    return monkeypatch


class TestSettings:

    def test_mainnet_defaults(self, clean_env):
        cfg = Settings.load()

        assert cfg.network == "ic"
        assert not cfg.is_local
        assert cfg.host == "https://ic0.app"
        assert cfg.deposit_service_id == DEFAULT_SERVICE_IDS["iso_dapp"]
        assert cfg.order_book_service_id == DEFAULT_SERVICE_IDS["dex"]
        assert set(cfg.token_service_ids) == {"ckBTC", "ckETH", "ckUSDC"}
        assert cfg.status_poll_interval_sec == 5.0
        assert cfg.detection_poll_interval_sec == 10.0

    def test_local_network(self, clean_env):
        clean_env.setenv("CKF_NETWORK", "local")

        cfg = Settings.load()

        assert cfg.is_local
        assert cfg.host == "http://localhost:8000"

    def test_env_overrides(self, clean_env):
        clean_env.setenv("CKF_STATUS_POLL_SEC", "2.5")
        clean_env.setenv("CKF_RPC_RETRIES", "4")
        clean_env.setenv("CKF_DEPOSIT_SERVICE_ID", "custom-iso")

        cfg = Settings.load()

        assert cfg.status_poll_interval_sec == 2.5
        assert cfg.rpc_retries == 4
        assert cfg.deposit_service_id == "custom-iso"

    @pytest.mark.parametrize("key,value", [
        ("CKF_STATUS_POLL_SEC", "0"),
        ("CKF_RPC_TIMEOUT_SEC", "-1"),
        ("CKF_RPC_RETRIES", "-1"),
        ("CKF_ALERT_WEBHOOK_TYPE", "teams"),
    ])
    def test_sanity_check_rejects(self, clean_env, key, value):
        clean_env.setenv(key, value)
        with pytest.raises(ValueError):
            Settings.load()

    def test_dump_and_level(self, clean_env):
        clean_env.setenv("CKF_LOG_LEVEL", "debug")
        cfg = Settings.load()

        assert cfg.dump()["network"] == "ic"
        assert cfg.log_level_value == 10

    @pytest.mark.parametrize("raw,expected", [("1", True), ("yes", True), ("false", False), ("0", False)])
    def test_env_bool(self, monkeypatch, raw, expected):
        monkeypatch.setenv("CKF_FLAG", raw)
        assert env_bool("CKF_FLAG", not expected) is expected


class TestServiceIds:

    def test_yaml_overrides(self, tmp_path):
        path = tmp_path / "ids.yaml"
        path.write_text("iso_dapp: local-iso\nckBTC: local-ckbtc\n")

        ids = resolve_service_ids(str(path))

        assert ids["iso_dapp"] == "local-iso"
        assert ids["ckBTC"] == "local-ckbtc"
        assert ids["dex"] == DEFAULT_SERVICE_IDS["dex"]

    def test_missing_file(self, tmp_path):
        assert load_service_id_overrides(str(tmp_path / "nope.yaml")) == {}

    def test_invalid_yaml_ignored(self, tmp_path):
        path = tmp_path / "ids.yaml"
        path.write_text("iso_dapp: [unclosed\n")
        assert load_service_id_overrides(str(path)) == {}

    def test_non_mapping_ignored(self, tmp_path):
        path = tmp_path / "ids.yaml"
        path.write_text("- a\n- b\n")
        assert load_service_id_overrides(str(path)) == {}
