from __future__ import annotations

from deviceagent._redact import is_secret_key, redact_for_log


def test_redact_for_log_redacts_sensitive_keys() -> None:
    payload = {
        "project": "p1",
        "token": "ffd_abc",
        "Authorization": "Bearer ffd_abc",
        "broker": {"brokerPassword": "pw", "username": "device-1"},
        "credentials": {"user": "x"},
    }

    redacted = redact_for_log(payload)
    assert redacted["project"] == "p1"
    assert redacted["token"] == "<redacted>"
    assert redacted["Authorization"] == "<redacted>"
    assert redacted["broker"]["brokerPassword"] == "<redacted>"
    assert redacted["broker"]["username"] == "device-1"
    assert redacted["credentials"] == "<redacted>"


def test_redact_for_log_elides_snapshot_content() -> None:
    snapshot = {"id": "s1", "flows": [{"id": "n1"}, {"id": "n2"}], "modules": {"node-red-x": "1.0"}}

    redacted = redact_for_log(snapshot)
    assert redacted == {"id": "s1", "flows": "<2 items>", "modules": "<1 items>"}


def test_redact_for_log_truncates_long_strings() -> None:
    long_value = "x" * 600
    redacted = redact_for_log({"value": long_value}, max_string=10)
    assert redacted["value"].startswith("x" * 10)
    assert "<truncated>" in redacted["value"]


def test_redact_for_log_handles_sequences_and_none() -> None:
    assert redact_for_log(None) is None
    assert redact_for_log([{"secret": "s"}, 3]) == [{"secret": "<redacted>"}, 3]
    assert redact_for_log(b"abc") == "<bytes:3b>"


def test_redact_for_log_masks_settings_env_values() -> None:
    settings = {"hash": "h1", "env": {"DB_PASSWORD": "hunter2", "PORT": "1880"}}

    assert redact_for_log(settings) == {"hash": "h1", "env": {"DB_PASSWORD": "<redacted>", "PORT": "<redacted>"}}


def test_secret_keys_match_by_substring() -> None:
    assert is_secret_key("credentialSecret")
    assert is_secret_key("X-Auth-Token")
    assert not is_secret_key("snapshotRestartCount")
