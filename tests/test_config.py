import pytest

from oraclesim.config import SimulatorConfig
from oraclesim.schema import EncodingScheme


def test_defaults():
    config = SimulatorConfig.from_env()
    assert config.uses_local_router
    assert config.poll_interval_seconds == 0.05
    assert config.http_timeout_seconds == 20.0
    assert config.encoding_scheme is EncodingScheme.PACKED
    assert config.submit_retries == 3
    assert config.report_errors is False
    assert config.max_result_bytes is None
    assert config.max_concurrent_requests == 8
    assert dict(config.secrets_bundle()) == {}


def test_environment_is_parsed(monkeypatch):
    monkeypatch.setenv("ORACLESIM_RPC_URL", "http://127.0.0.1:8545")
    monkeypatch.setenv("ORACLESIM_ROUTER_ADDRESS", "0x" + "ab" * 20)
    monkeypatch.setenv("ORACLESIM_CHAIN_ID", "31337")
    monkeypatch.setenv("ORACLESIM_POLL_INTERVAL", "0.2")
    monkeypatch.setenv("ORACLESIM_HTTP_TIMEOUT", "5")
    monkeypatch.setenv("ORACLESIM_ENCODING_SCHEME", "TUPLE")
    monkeypatch.setenv("ORACLESIM_SUBMIT_RETRIES", "0")
    monkeypatch.setenv("ORACLESIM_REPORT_ERRORS", "yes")
    monkeypatch.setenv("ORACLESIM_MAX_RESULT_BYTES", "256")
    monkeypatch.setenv("ORACLESIM_MAX_CONCURRENT_REQUESTS", "3")
    monkeypatch.setenv("ORACLESIM_SECRETS", '{"oracleAPIKey": "k"}')
    config = SimulatorConfig.from_env()
    assert not config.uses_local_router
    assert config.chain_id == 31337
    assert config.poll_interval_seconds == 0.2
    assert config.http_timeout_seconds == 5.0
    assert config.encoding_scheme is EncodingScheme.TUPLE
    assert config.submit_retries == 0
    assert config.report_errors is True
    assert config.max_result_bytes == 256
    assert config.max_concurrent_requests == 3
    assert config.secrets_bundle()["oracleAPIKey"] == "k"


def test_overrides_win(monkeypatch):
    monkeypatch.setenv("ORACLESIM_SUBMIT_RETRIES", "7")
    assert SimulatorConfig.from_env(submit_retries=1).submit_retries == 1


def test_invalid_bool(monkeypatch):
    monkeypatch.setenv("ORACLESIM_REPORT_ERRORS", "maybe")
    with pytest.raises(ValueError, match="REPORT_ERRORS"):
        SimulatorConfig.from_env()


@pytest.mark.parametrize(
    "name, value",
    [
        ("ORACLESIM_ENCODING_SCHEME", "abi"),
        ("ORACLESIM_POLL_INTERVAL", "0"),
        ("ORACLESIM_SUBMIT_RETRIES", "-1"),
        ("ORACLESIM_MAX_CONCURRENT_REQUESTS", "0"),
        ("ORACLESIM_CHAIN_ID", "mainnet"),
        ("ORACLESIM_SECRETS", "[1, 2]"),
    ],
)
def test_invalid_values(monkeypatch, name, value):
    monkeypatch.setenv(name, value)
    with pytest.raises(ValueError):
        SimulatorConfig.from_env()


def test_private_key_is_masked(monkeypatch):
    monkeypatch.setenv("ORACLESIM_PRIVATE_KEY", "0x" + "11" * 32)
    monkeypatch.setenv("ORACLESIM_SECRETS", '{"oracleAPIKey": "hidden"}')
    config = SimulatorConfig.from_env()
    assert config.private_key.get_secret_value() == "0x" + "11" * 32
    assert "11" * 32 not in repr(config)
    assert "hidden" not in repr(config)
    assert "hidden" not in repr(config.secrets_bundle())


def test_dotenv_file_is_loaded_without_overriding(monkeypatch, tmp_path):
    # registered with monkeypatch so teardown removes what load_dotenv sets
    for name in ("ORACLESIM_CHAIN_ID", "ORACLESIM_SUBMIT_RETRIES"):
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    (tmp_path / ".env").write_text("ORACLESIM_CHAIN_ID=5\nORACLESIM_SUBMIT_RETRIES=9\n")
    monkeypatch.setenv("ORACLESIM_SUBMIT_RETRIES", "2")
    config = SimulatorConfig.from_env()
    assert config.chain_id == 5
    assert config.submit_retries == 2


def test_explicit_env_file(monkeypatch, tmp_path):
    monkeypatch.setenv("ORACLESIM_HTTP_TIMEOUT", "")
    monkeypatch.delenv("ORACLESIM_HTTP_TIMEOUT")
    env_file = tmp_path / "sim.env"
    env_file.write_text("ORACLESIM_HTTP_TIMEOUT=3\n")
    assert SimulatorConfig.from_env(env_file=env_file).http_timeout_seconds == 3.0
