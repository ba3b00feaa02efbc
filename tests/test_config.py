import json

from agon.config.loader import camel_to_snake, convert_keys, get_config_path, load_config, save_config
from agon.config.schema import Config


def test_camel_case_file_is_loaded(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(
        json.dumps(
            {
                "database": {"path": str(tmp_path / "x.db")},
                "discord": {"botToken": "abc", "fetchLimit": 80},
                "arena": {"maxTurns": 12, "dedupLateSeconds": 60},
                "providers": {"openrouter": {"apiKey": "sk-or"}},
                "steps": {"llm": {"maxRetries": 1}},
            }
        ),
        encoding="utf-8",
    )

    config = load_config(path)

    assert config.discord.bot_token == "abc"
    assert config.discord.fetch_limit == 80
    assert config.arena.max_turns == 12
    assert config.arena.dedup_late_seconds == 60
    assert config.get_provider("openrouter").api_key == "sk-or"
    assert config.get_provider("nope") is None
    assert config.steps.llm.max_retries == 1
    assert config.steps.chat.max_retries == 5
    assert config.database_path == tmp_path / "x.db"


def test_invalid_file_falls_back_to_defaults(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{not json", encoding="utf-8")

    config = load_config(path)

    assert config.arena.max_turns == 30
    assert config.finalize.enabled is True


def test_missing_file_gives_defaults(tmp_path):
    config = load_config(tmp_path / "absent.json")

    assert config.queue.max_attempts == 10
    assert config.watchdog.active_stall_seconds == 120


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("AGON_DISCORD__BOT_TOKEN", "from-env")
    monkeypatch.setenv("AGON_ARENA__HISTORY_LIMIT", "7")

    config = Config()

    assert config.discord.bot_token == "from-env"
    assert config.arena.history_limit == 7


def test_config_path_override(monkeypatch, tmp_path):
    monkeypatch.setenv("AGON_CONFIG", str(tmp_path / "c.json"))
    assert get_config_path() == tmp_path / "c.json"

    monkeypatch.delenv("AGON_CONFIG")
    assert get_config_path().name == "config.json"


def test_save_round_trips_through_camel_case(tmp_path):
    config = Config()
    config.arena.max_turns = 9
    path = save_config(config, tmp_path / "nested" / "config.json")

    raw = json.loads(path.read_text(encoding="utf-8"))

    assert raw["arena"]["maxTurns"] == 9
    assert "bot_token" not in raw["discord"]
    assert load_config(path).arena.max_turns == 9


def test_key_conversion():
    assert camel_to_snake("auditSlotDurationSeconds") == "audit_slot_duration_seconds"
    assert convert_keys({"a": [{"fooBar": 1}]}) == {"a": [{"foo_bar": 1}]}
