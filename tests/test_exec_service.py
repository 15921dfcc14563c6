"""Tests for running commands across members"""
import pytest

from megarepo.config import Config
from megarepo.exceptions import ConfigError
from megarepo.services.exec_service import NOT_SYNCED_EXIT_CODE, ExecService
from megarepo.services.sync_service import SyncOptions, SyncService


@pytest.fixture
def synced(config, remote_repo, remotes, workspace):
    """Workspace with lib (main) and dev (develop) synced."""
    url = remotes.url(remote_repo)
    root = workspace({"lib": url, "dev": url + "#develop"})
    SyncService(config).sync(root, SyncOptions())
    return root


class TestExecService:
    """Test command execution in member directories."""

    def test_runs_in_each_member(self, config, synced):
        results = ExecService(config).run(synced, "git rev-parse --abbrev-ref HEAD")
        assert [r.name for r in results] == ["lib", "dev"]
        assert [r.stdout.strip() for r in results] == ["main", "develop"]
        assert all(r.ok for r in results)

    def test_exit_codes_reported(self, config, synced):
        results = ExecService(config).run(synced, "test -f develop.txt")
        codes = {r.name: r.exit_code for r in results}
        assert codes == {"lib": 1, "dev": 0}

    def test_stderr_captured(self, config, synced):
        result = ExecService(config).run(synced, "echo oops >&2; exit 3", member="lib")[0]
        assert result.exit_code == 3
        assert result.stderr.strip() == "oops"
        assert result.to_dict() == {"name": "lib", "exitCode": 3, "stdout": "", "stderr": "oops\n"}

    def test_single_member(self, config, synced):
        results = ExecService(config).run(synced, "pwd", member="dev")
        assert [r.name for r in results] == ["dev"]

    def test_unknown_member(self, config, synced):
        with pytest.raises(ConfigError, match="not found"):
            ExecService(config).run(synced, "true", member="nope")

    def test_unsynced_member_not_run(self, config, synced, write_megarepo, remote_repo, remotes):
        url = remotes.url(remote_repo)
        write_megarepo(synced, {"lib": url, "dev": url + "#develop", "later": url + "#v1.0.0"})

        results = {r.name: r for r in ExecService(config).run(synced, "true")}
        assert results["lib"].ok
        assert results["later"].exit_code == NOT_SYNCED_EXIT_CODE
        assert results["later"].stderr == "Member not synced"

    def test_parallel_keeps_config_order(self, temp_dir, synced):
        parallel = Config(store_path=str(temp_dir / "store"), workers=4)
        results = ExecService(parallel).run(synced, "sleep 0.1; echo done", parallel=True)
        assert [r.name for r in results] == ["lib", "dev"]
        assert [r.stdout for r in results] == ["done\n", "done\n"]
