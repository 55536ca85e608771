import os

import pytest

import env_validation
from env_validation import EnvironmentError, get_env_bool, safe_float, safe_int, validate_environment


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in ("DB_PATH", "LLM_URL", "LLM_TIMEOUT", "LLM_MAX_TOKENS", "TOPIC_CATALOG_PATH"):
        # teardown also removes defaults written by validate_environment
        monkeypatch.setenv(var, "")
        monkeypatch.delenv(var)


def test_defaults_are_applied(monkeypatch):
    validate_environment()

    assert os.environ["LLM_URL"] == env_validation.DEFAULT_LLM_URL
    assert os.environ["DB_PATH"] == "data.db"


def test_invalid_url_is_rejected(monkeypatch):
    monkeypatch.setenv("LLM_URL", "localhost:4891")

    with pytest.raises(EnvironmentError, match="LLM_URL"):
        validate_environment()


@pytest.mark.parametrize("value", ["abc", "0", "-5"])
def test_timeout_must_be_positive_integer(monkeypatch, value):
    monkeypatch.setenv("LLM_TIMEOUT", value)

    with pytest.raises(EnvironmentError, match="LLM_TIMEOUT"):
        validate_environment()


def test_missing_catalog_file_is_rejected(monkeypatch, tmp_path):
    monkeypatch.setenv("TOPIC_CATALOG_PATH", str(tmp_path / "missing.yaml"))

    with pytest.raises(EnvironmentError, match="TOPIC_CATALOG_PATH"):
        validate_environment()


def test_safe_parsers_fall_back_on_garbage(monkeypatch):
    monkeypatch.setenv("LLM_TEMPERATURE", "warm")
    monkeypatch.setenv("LLM_TIMEOUT", "12")
    monkeypatch.setenv("SEND_MAX_TOKENS", "off")

    assert safe_float("LLM_TEMPERATURE", 0.2) == 0.2
    assert safe_int("LLM_TIMEOUT", 60) == 12
    assert get_env_bool("SEND_MAX_TOKENS", True) is False
    assert get_env_bool("UNSET_FLAG_FOR_TEST", True) is True
