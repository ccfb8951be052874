import pytest
from pydantic import ValidationError

from pitcrew.config import RunConfig, load_config


def _write(tmp_path, text):
    path = tmp_path / "pitcrew.yaml"
    path.write_text(text)
    return path


def test_load_minimal_config(tmp_path):
    config = load_config(_write(tmp_path, "modules:\n  - tests.sample\n"))
    assert config.modules == ["tests.sample"]
    assert config.concurrency_limit == 1
    assert config.timeout_s is None
    assert config.teardown_grace_s == 5.0
    assert config.strict_mocks is True
    assert config.synchronized_mocks is False


def test_empty_file_gives_defaults(tmp_path):
    config = load_config(_write(tmp_path, ""))
    assert config == RunConfig()


def test_environment_variables_expanded(tmp_path, monkeypatch):
    monkeypatch.setenv("PITCREW_MODULE", "suite.orders")
    monkeypatch.delenv("PITCREW_TIMEOUT", raising=False)
    config = load_config(
        _write(
            tmp_path,
            "modules:\n  - ${PITCREW_MODULE}\ntimeout_s: ${PITCREW_TIMEOUT:-2.5}\n",
        )
    )
    assert config.modules == ["suite.orders"]
    assert config.timeout_s == 2.5


def test_unknown_key_rejected(tmp_path):
    with pytest.raises(ValidationError):
        load_config(_write(tmp_path, "paralel: 4\n"))


def test_top_level_must_be_mapping(tmp_path):
    with pytest.raises(ValueError):
        load_config(_write(tmp_path, "- a\n- b\n"))


@pytest.mark.parametrize(
    "fields",
    [
        {"concurrency_limit": 0},
        {"concurrency_limit": 1000},
        {"timeout_s": 0},
        {"deadline_s": -1},
        {"teardown_grace_s": -0.5},
        {"modules": ["not a module"]},
        {"modules": ["pkg..mod"]},
        {"timeout_s": 10, "deadline_s": 5},
    ],
)
def test_invalid_settings_rejected(fields):
    with pytest.raises(ValidationError):
        RunConfig(**fields)


def test_module_names_are_stripped():
    assert RunConfig(modules=[" tests.sample "]).modules == ["tests.sample"]
