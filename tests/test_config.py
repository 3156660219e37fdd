import pytest
from pydantic import ValidationError

from app.config import Settings


def test_history_limit_defaults_to_unbounded() -> None:
    assert Settings().open_history_limit is None


@pytest.mark.parametrize("value", ["0", "-5"])
def test_history_limit_rejects_non_positive_values(monkeypatch, value: str) -> None:
    monkeypatch.setenv("OPEN_HISTORY_LIMIT", value)
    with pytest.raises(ValidationError):
        Settings()


def test_idle_timeout_from_environment(monkeypatch) -> None:
    monkeypatch.setenv("MONGODB_MAX_IDLE_TIME_MS", "30000")
    assert Settings().mongodb_max_idle_time_ms == 30000
