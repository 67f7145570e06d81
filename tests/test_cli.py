"""Tests del CLI de replay JSON-lines.

Ejecutar:
    pytest tests/test_cli.py -v
"""

import json
from datetime import timedelta

import pytest

from quality_monitor.cli import ReplayClock, main


@pytest.fixture
def readings_file(tmp_path, now, rng):
    path = tmp_path / "readings.jsonl"
    lines = []
    for i, value in enumerate(rng.normal(23.5, 0.5, 100)):
        lines.append(json.dumps({
            "streamId": "reader-01",
            "timestamp": (now + timedelta(seconds=i)).isoformat(),
            "temperature": float(value),
            "signal_strength": 70.0,
        }))
    lines.append("this is not json")
    lines.append(json.dumps({
        "streamId": "reader-01",
        "timestamp": (now + timedelta(seconds=101)).isoformat(),
        "temperature": 900.0,
        "signal_strength": 70.0,
    }))
    path.write_text("\n".join(lines) + "\n")
    return path


def _events(capsys):
    out = capsys.readouterr().out
    return [json.loads(line) for line in out.splitlines() if line.strip()]


class TestReplayClock:

    def test_clock_follows_latest_timestamp(self, now):
        clock = ReplayClock()
        clock.advance({"streamId": "s", "timestamp": now.isoformat()})
        clock.advance({"streamId": "s", "timestamp": (now - timedelta(hours=1)).isoformat()})
        clock.advance("garbage")

        assert clock() == now


class TestMain:

    def test_replay_emits_events(self, isolated_env, readings_file, capsys):
        code = main([str(readings_file), "--replay-clock", "--cycle-every", "50"])

        events = _events(capsys)
        kinds = {e["event_type"] for e in events}
        reasons = {e["reason"] for e in events if e["event_type"] == "ValidationResult"}

        assert code == 0
        assert "QualityScore" in kinds
        assert reasons == {"SchemaViolation", "RangeViolation"}

    def test_save_snapshot(self, isolated_env, readings_file, tmp_path, capsys):
        db_path = tmp_path / "snap.db"
        isolated_env.setenv("QM_SNAPSHOT_DB_URL", f"sqlite:///{db_path}")

        code = main([str(readings_file), "--replay-clock", "--save-snapshot"])

        assert code == 0
        assert db_path.exists()

    def test_invalid_configuration_exit_code(self, isolated_env, readings_file):
        isolated_env.setenv("QM_WEIGHT_VALIDITY", "0.9")
        assert main([str(readings_file)]) == 2

    def test_missing_input_file(self, isolated_env, tmp_path):
        assert main([str(tmp_path / "missing.jsonl")]) == 1

    def test_unreachable_snapshot_db(self, isolated_env, readings_file, tmp_path, capsys):
        """Sin snapshot se arranca en frío; si no se puede guardar, exit code 1."""
        missing_dir = tmp_path / "no-such-dir" / "snap.db"
        isolated_env.setenv("QM_SNAPSHOT_DB_URL", f"sqlite:///{missing_dir}")
        isolated_env.setenv("QM_SNAPSHOT_TIMEOUT_SEC", "5")

        code = main([str(readings_file), "--replay-clock", "--load-snapshot", "--save-snapshot"])

        assert code == 1
        assert any(e["event_type"] == "QualityScore" for e in _events(capsys))
