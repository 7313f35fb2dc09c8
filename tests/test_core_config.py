import json
import pytest
from pydantic import ValidationError

import core.config as config_module
from core.config import ClaimerSettings, Registration, RegistrationStatus, RewardSection


@pytest.fixture
def isolated_config_dir(tmp_path, monkeypatch):
    """Point CONFIG_DIR at an empty temp dir so repo files never leak in."""
    monkeypatch.setattr(config_module, "CONFIG_DIR", tmp_path)
    return tmp_path


def test_defaults(isolated_config_dir):
    settings = ClaimerSettings()
    assert settings.navigation_timeout_ms == 30000
    assert settings.click_settle_ms == 2000
    assert settings.max_concurrent_sessions == 10
    assert settings.inter_account_delay_seconds == 10.0
    assert settings.schedule_hours_utc == [0, 6, 12, 18]
    assert [s.name for s in settings.reward_sections] == ["daily_reward", "free_daily_cue_piece"]
    assert settings.reward_sections[0].url.endswith("#daily_reward")


def test_env_overrides(isolated_config_dir, monkeypatch):
    monkeypatch.setenv("USER_IDS", "111, 222,,333")
    monkeypatch.setenv("MAX_CONCURRENT_SESSIONS", "3")
    monkeypatch.setenv("SEQUENTIAL", "true")
    monkeypatch.setenv("SCHEDULE_HOURS_UTC", "[18, 6, 6]")

    settings = ClaimerSettings()

    assert settings.user_ids == ["111", "222", "333"]
    assert settings.max_concurrent_sessions == 3
    assert settings.sequential is True
    assert settings.schedule_hours_utc == [6, 18]


def test_user_ids_json_list(isolated_config_dir, monkeypatch):
    monkeypatch.setenv("USER_IDS", '["1", 2]')
    assert ClaimerSettings().user_ids == ["1", "2"]


def test_legacy_single_user_id(isolated_config_dir, monkeypatch):
    monkeypatch.setenv("USER_IDS", "1")
    monkeypatch.setenv("USER_ID", "7")
    assert ClaimerSettings().user_ids == ["1", "7"]


def test_invalid_values_rejected(isolated_config_dir):
    with pytest.raises(ValidationError):
        ClaimerSettings(schedule_hours_utc=[25])
    with pytest.raises(ValidationError):
        ClaimerSettings(schedule_hours_utc=[])
    with pytest.raises(ValidationError):
        ClaimerSettings(max_concurrent_sessions=0)


def test_json_config_is_merged(isolated_config_dir):
    (isolated_config_dir / "claimer_config.json").write_text(json.dumps({
        "reward_sections": [
            {"name": "weekly", "url": "https://example.invalid/shop#weekly", "fallback_label": "Weekly Box"}
        ],
        "user_ids": ["111", "222"],
        "browser_settings": {"headless": False, "timeout": 45000, "user_agents": ["UA-1"]},
    }), encoding="utf-8")

    settings = ClaimerSettings(user_ids=["111"])

    assert [s.name for s in settings.reward_sections] == ["weekly"]
    assert settings.reward_sections[0].fallback_label == "Weekly Box"
    assert settings.user_ids == ["111", "222"]
    assert settings.headless is False
    assert settings.navigation_timeout_ms == 45000
    assert settings.user_agents == ["UA-1"]


def test_corrupt_json_config_is_ignored(isolated_config_dir):
    (isolated_config_dir / "claimer_config.json").write_text("{not json", encoding="utf-8")
    settings = ClaimerSettings()
    assert len(settings.reward_sections) == 2


class TestModels:

    def test_registration_defaults(self):
        registration = Registration(account_id="1", username="alice")
        assert registration.status == RegistrationStatus.ACTIVE
        assert registration.is_active
        assert registration.created_at.tzinfo is not None
        assert registration.metadata == {}

    def test_registration_round_trip_json(self):
        registration = Registration(account_id="1", username="alice", status="invalid")
        restored = Registration.model_validate(registration.model_dump(mode="json"))
        assert restored.status == RegistrationStatus.INVALID
        assert not restored.is_active

    def test_reward_section_default_selector(self):
        section = RewardSection(name="x", url="https://example.invalid")
        assert section.button_selector == 'button:has-text("FREE")'
