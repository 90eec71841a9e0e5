"""Settings and fetch policy tests."""
from __future__ import annotations

import pytest
from pydantic import ValidationError as PydanticValidationError

from shared.config import Settings
from shared.models.enums import DataDomain
from sync.policy import FetchPolicy


def test_policy_for_each_domain() -> None:
    settings = Settings()
    matches = settings.policy_for(DataDomain.MATCHES)
    standings = settings.policy_for(DataDomain.STANDINGS)
    assert matches.stale_after < standings.stale_after
    assert settings.policy_for(DataDomain.HEAD_TO_HEAD).retain_for == settings.head_to_head_retain_for_s
    assert all(settings.policy_for(d).refetch_on_refocus is False for d in DataDomain)


def test_env_overrides_policy(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MS_MATCHES_STALE_AFTER_S", "5")
    monkeypatch.setenv("MS_MATCHES_MAX_RETRIES", "3")
    policy = Settings().policy_for(DataDomain.MATCHES)
    assert policy.stale_after == 5.0
    assert policy.max_retries == 3


def test_refetch_on_refocus_cannot_be_enabled() -> None:
    with pytest.raises(PydanticValidationError):
        FetchPolicy(refetch_on_refocus=True)


def test_backoff_doubles() -> None:
    policy = FetchPolicy(retry_base_delay=0.5)
    assert [policy.backoff(n) for n in (1, 2, 3)] == [0.5, 1.0, 2.0]


def test_picks_top_n_must_be_positive() -> None:
    with pytest.raises(PydanticValidationError):
        Settings(picks_top_n=0)
