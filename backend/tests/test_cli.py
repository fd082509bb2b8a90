"""Management CLI tests."""

import pytest

from app import cli


@pytest.mark.unit
class TestCli:

    def test_unknown_command_exits(self):
        with pytest.raises(SystemExit) as exc_info:
            cli.main(["rebuild-everything"])
        assert exc_info.value.code == 2

    def test_dispatches_to_command(self, monkeypatch):
        """The exit code is whatever the command returns."""
        calls = []

        async def fake_check():
            calls.append("check-locations")
            return 1

        monkeypatch.setitem(cli.COMMANDS, "check-locations", fake_check)
        monkeypatch.setattr(cli, "setup_logging", lambda: None)

        assert cli.main(["check-locations"]) == 1
        assert calls == ["check-locations"]
