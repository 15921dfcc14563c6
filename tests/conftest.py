"""Pytest fixtures for megarepo tests"""
import json
import tempfile
from pathlib import Path

import pytest
import git

from megarepo.config import Config
from megarepo.constants import CONFIG_FILE_NAME


@pytest.fixture
def temp_dir():
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir).resolve()


@pytest.fixture(autouse=True)
def git_env(monkeypatch, temp_dir):
    """Give git an identity and keep the store inside the test directory."""
    monkeypatch.setenv("GIT_AUTHOR_NAME", "Test User")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "test@example.com")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "Test User")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "test@example.com")
    monkeypatch.setenv("MEGAREPO_STORE", str(temp_dir / "store"))
    monkeypatch.delenv("MEGAREPO_ROOT", raising=False)


@pytest.fixture
def config(temp_dir):
    """Sequential config pointed at the test store."""
    return Config(store_path=str(temp_dir / "store"), sequential=True, network_retries=0)


def _commit_file(repo: git.Repo, name: str, content: str, message: str = None) -> str:
    """Write a file in a non-bare repo, commit it and return the new sha."""
    path = Path(repo.working_dir) / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    repo.index.add([name])
    repo.index.commit(message or f"Update {name}")
    return repo.head.commit.hexsha


class RemoteFactory:
    """Creates source repositories reachable through file:// URLs."""

    def __init__(self, base: Path):
        self.base = base

    def create(self, owner: str, name: str, files: dict = None) -> git.Repo:
        path = self.base / owner / name
        path.mkdir(parents=True)
        repo = git.Repo.init(path)
        repo.config_writer().set_value("user", "name", "Test User").release()
        repo.config_writer().set_value("user", "email", "test@example.com").release()

        _commit_file(repo, "README.md", f"# {name}\n", "Initial commit")
        repo.git.branch("-M", "main")
        for file_name, content in (files or {}).items():
            _commit_file(repo, file_name, content)

        repo.git.checkout("-b", "develop")
        _commit_file(repo, "develop.txt", "develop\n", "Develop work")
        repo.git.checkout("main")
        repo.create_tag("v1.0.0")
        return repo

    @staticmethod
    def url(repo: git.Repo) -> str:
        return Path(repo.working_dir).as_uri()


@pytest.fixture
def remotes(temp_dir):
    """Factory for file:// remotes under <temp_dir>/remotes/<owner>/<repo>."""
    factory = RemoteFactory(temp_dir / "remotes")
    yield factory


@pytest.fixture
def remote_repo(remotes):
    """A single remote with main, develop and tag v1.0.0."""
    repo = remotes.create("acme", "lib")
    yield repo
    repo.close()


def _write_megarepo(root: Path, members: dict) -> Path:
    root.mkdir(parents=True, exist_ok=True)
    (root / CONFIG_FILE_NAME).write_text(json.dumps({"members": members}, indent=2) + "\n")
    return root


@pytest.fixture
def workspace(temp_dir):
    """Factory building a workspace directory with the given members."""
    def _make(members: dict, name: str = "workspace") -> Path:
        return _write_megarepo(temp_dir / name, members)
    return _make


@pytest.fixture
def commit_file():
    """Helper committing a file to a remote: commit_file(repo, name, content) -> sha."""
    return _commit_file


@pytest.fixture
def write_megarepo():
    """Helper (re)writing megarepo.json: write_megarepo(root, members)."""
    return _write_megarepo


@pytest.fixture
def nested_remote(remotes):
    """Factory for a remote that is itself a megarepo: nested_remote(name, members)."""
    def _make(name: str, members: dict) -> git.Repo:
        repo = remotes.create("acme", name)
        _commit_file(repo, ".gitignore", "repos/\nmegarepo.lock\n")
        _commit_file(repo, CONFIG_FILE_NAME, json.dumps({"members": members}, indent=2) + "\n")
        return repo
    return _make
