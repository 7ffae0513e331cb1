"""Tests for the RLN CLI — parsing and end-to-end runs against a temp data dir."""

import json
from pathlib import Path

import pytest

from rln.cli import build_parser, main
from rln.crypto.epoch import epoch_start
from rln.persistence.event_log import EventKind, EventLog


def _run(data_dir: Path, *argv: str) -> int:
    return main(["--data-dir", str(data_dir), *argv])


def _nullifier_from(output: str) -> str:
    for line in output.splitlines():
        if line.strip().startswith("Nullifier:"):
            return line.split(":", 1)[1].strip()
    raise AssertionError(f"no nullifier in output: {output!r}")


class TestCLIParsing:
    def test_post_message_command(self) -> None:
        args = build_parser().parse_args([
            "post-message", "--name", "alice", "--message", "hi", "--message-id", "1",
        ])
        assert args.command == "post-message"
        assert args.name == "alice"
        assert args.message_id == 1
        assert args.epoch is None

    def test_verify_message_command(self) -> None:
        args = build_parser().parse_args(["verify-message", "-i", "2"])
        assert args.command == "verify-message"
        assert args.index == 2

    def test_setup_default_names(self) -> None:
        args = build_parser().parse_args(["setup"])
        assert args.names == ["alice", "bob", "charlie"]

    def test_global_options(self, tmp_path: Path) -> None:
        args = build_parser().parse_args(["--data-dir", str(tmp_path), "--verbose", "status"])
        assert args.data_dir == tmp_path
        assert args.verbose


class TestCLIExecution:
    def test_no_command_shows_help(self) -> None:
        assert main([]) == 0

    def test_setup_and_list(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        assert _run(tmp_path, "setup", "--names", "alice", "bob") == 0
        assert (tmp_path / "identities.json").exists()
        assert (tmp_path / "events.jsonl").exists()

        capsys.readouterr()
        assert _run(tmp_path, "list-identities") == 0
        out = capsys.readouterr().out
        assert "[0] alice (active)" in out
        assert "[1] bob (active)" in out

    def test_setup_is_idempotent(self, tmp_path: Path) -> None:
        assert _run(tmp_path, "setup", "--names", "alice") == 0
        assert _run(tmp_path, "setup", "--names", "alice") == 0
        log = EventLog(storage_path=tmp_path / "events.jsonl")
        assert len(log.events(EventKind.IDENTITY_REGISTERED)) == 1

    def test_register_below_minimum_stake(self, tmp_path: Path) -> None:
        assert _run(tmp_path, "register", "--name", "dave", "--stake", "0.1") == 1
        assert _run(tmp_path, "register", "--name", "dave", "--stake", "5") == 0

    def test_post_unknown_identity(self, tmp_path: Path) -> None:
        assert _run(tmp_path, "post-message", "--name", "ghost", "--message", "boo") == 1

    def test_spam_detect_and_slash(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        assert _run(tmp_path, "setup", "--names", "alice", "bob") == 0
        assert _run(tmp_path, "post-message", "--name", "alice", "--message", "hello") == 0
        assert _run(tmp_path, "post-message", "--name", "bob", "--message", "hi") == 0

        capsys.readouterr()
        assert _run(tmp_path, "detect-spam") == 0
        assert "No spam detected" in capsys.readouterr().out

        assert _run(tmp_path, "post-message", "--name", "alice", "--message", "spam") == 1
        out = capsys.readouterr().out
        assert "SPAM DETECTED" in out
        nullifier = _nullifier_from(out)

        assert _run(tmp_path, "detect-spam") == 0
        assert nullifier in capsys.readouterr().out

        assert _run(tmp_path, "slash", "--nullifier", nullifier) == 0
        assert "Slashed alice" in capsys.readouterr().out

        assert _run(tmp_path, "slash", "--nullifier", nullifier) == 1

        assert _run(tmp_path, "status") == 0
        status = json.loads(capsys.readouterr().out)
        assert status["members"] == 2
        assert status["slashed"] == 1
        assert status["nullifiers"] == 2

    def test_list_messages_and_stats(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        assert _run(tmp_path, "setup", "--names", "alice") == 0
        assert _run(tmp_path, "post-message", "--name", "alice", "--message", "hello") == 0
        messages = [
            json.loads(line)
            for line in (tmp_path / "messages.jsonl").read_text(encoding="utf-8").splitlines()
        ]
        epoch = messages[0]["epoch"]

        capsys.readouterr()
        assert _run(tmp_path, "list-messages", "--epoch", str(epoch)) == 0
        out = capsys.readouterr().out
        assert "'hello'" in out
        started = epoch_start(epoch, 3600)
        assert f"from {started:%Y-%m-%d %H:%M} UTC, accepted)" in out
        assert _run(tmp_path, "list-messages", "--epoch", str(epoch + 10)) == 0
        assert "No messages found." in capsys.readouterr().out

        assert _run(tmp_path, "stats") == 0
        out = capsys.readouterr().out
        assert "alice: 1" in out
        assert f"Epoch {epoch}: 1" in out

    def test_message_id_outside_limit(self, tmp_path: Path) -> None:
        assert _run(tmp_path, "setup", "--names", "alice") == 0
        assert _run(
            tmp_path, "post-message", "--name", "alice", "--message", "x", "--message-id", "3",
        ) == 1

    def test_config_file(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        data_dir = tmp_path / "state"
        config = tmp_path / "rln.json"
        config.write_text(
            json.dumps({"app_id": "forum", "tree_depth": 8, "data_dir": str(data_dir)}),
            encoding="utf-8",
        )
        assert main(["--config", str(config), "status"]) == 0
        status = json.loads(capsys.readouterr().out)
        assert status["app_id"] == "forum"
        assert status["capacity"] == 256
        assert data_dir.exists()

    def test_invalid_nullifier(self, tmp_path: Path) -> None:
        assert _run(tmp_path, "slash", "--nullifier", "not-hex") == 1

    def test_verify_message(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        assert _run(tmp_path, "setup", "--names", "alice") == 0
        assert _run(tmp_path, "post-message", "--name", "alice", "--message", "hello") == 0

        capsys.readouterr()
        assert _run(tmp_path, "verify-message", "--index", "0") == 0
        out = capsys.readouterr().out
        assert "Proof verification: VALID" in out
        assert "Known merkle root: yes" in out
        assert "Nullifier recorded: yes" in out

        assert _run(tmp_path, "verify-message", "--index", "1") == 1
        assert _run(tmp_path, "verify-message", "--index", "-1") == 1

    def test_verify_tampered_message(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        assert _run(tmp_path, "setup", "--names", "alice") == 0
        assert _run(tmp_path, "post-message", "--name", "alice", "--message", "hello") == 0
        path = tmp_path / "messages.jsonl"
        record = json.loads(path.read_text(encoding="utf-8"))
        record["statement"][4] = "0x2a"
        path.write_text(json.dumps(record) + "\n", encoding="utf-8")

        capsys.readouterr()
        assert _run(tmp_path, "verify-message", "--index", "0") == 1
        assert "Proof verification: INVALID" in capsys.readouterr().out

    def test_non_finite_stake(self, tmp_path: Path) -> None:
        assert _run(tmp_path, "register", "--name", "dave", "--stake", "nan") == 1
        assert _run(tmp_path, "register", "--name", "dave", "--stake", "inf") == 1
        assert not (tmp_path / "identities.json").exists()

    def test_replay_failure_is_reported(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        assert _run(tmp_path, "setup", "--names", "alice") == 0
        config = tmp_path / "rln.json"
        config.write_text(
            json.dumps({"min_stake": "5", "data_dir": str(tmp_path)}), encoding="utf-8",
        )
        capsys.readouterr()
        assert main(["--config", str(config), "status"]) == 1
        assert "below the required minimum" in capsys.readouterr().err
