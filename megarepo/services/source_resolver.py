"""Member source parsing and clone URL resolution."""

import os
import re
from pathlib import Path
from typing import Optional, Union
from urllib.parse import urlparse

from megarepo.constants import LOCAL_HOST
from megarepo.exceptions import (
    InvalidSourceError,
    LocalPathNotAddableError,
    NoCloneUrlResolvableError,
)
from megarepo.models.source import LocalSource, RemoteSource, RepoKey, SourceSpec
from megarepo.utils.logging import get_logger

logger = get_logger(__name__)

GITHUB_HOST = "github.com"
URL_SCHEMES = ("https", "http", "ssh", "git", "file")

_SHORTHAND_RE = re.compile(r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$")
_SCP_RE = re.compile(r"^(?:[A-Za-z0-9_.-]+@)?(?P<host>[A-Za-z0-9_.-]+):(?P<path>[^/].*)$")


def _split_ref(source: str) -> tuple[str, Optional[str]]:
    """Split 'url#ref' at the last '#'. An empty ref means no ref."""
    if "#" not in source:
        return source, None
    base, ref = source.rsplit("#", 1)
    return base, (ref or None)


def _looks_local(source: str, workspace_root: Optional[Union[str, Path]]) -> bool:
    if source.startswith((".", "/", "~")):
        return True
    if "://" in source or _SCP_RE.match(source):
        return False
    if workspace_root is not None and (Path(workspace_root) / source).exists():
        return True
    return False


def _resolve_local_path(source: str, workspace_root: Optional[Union[str, Path]]) -> str:
    path = Path(os.path.expanduser(source))
    if not path.is_absolute():
        base = Path(workspace_root) if workspace_root is not None else Path.cwd()
        path = base / path
    return os.path.normpath(str(path))


def repo_key_from_url(url: str) -> RepoKey:
    """Derive the store identity (host, owner, repo) of a remote URL.

    Raises:
        NoCloneUrlResolvableError: when no owner/repo can be derived
    """
    host: Optional[str] = None
    path = ""

    scp = _SCP_RE.match(url) if "://" not in url else None
    if scp:
        host = scp.group("host")
        path = scp.group("path")
    else:
        parsed = urlparse(url)
        if parsed.scheme not in URL_SCHEMES:
            raise NoCloneUrlResolvableError(url)
        host = LOCAL_HOST if parsed.scheme == "file" else parsed.hostname
        path = parsed.path

    segments = [s for s in path.strip("/").split("/") if s]
    if not host or len(segments) < 2:
        raise NoCloneUrlResolvableError(url)

    repo = segments[-1]
    if repo.endswith(".git"):
        repo = repo[: -len(".git")]
    if host == LOCAL_HOST:
        # file:// remotes only keep the last two path segments
        owner = segments[-2]
    else:
        owner = "/".join(segments[:-1])
    if not repo or not owner:
        raise NoCloneUrlResolvableError(url)

    return RepoKey(host=host.lower(), owner=owner, repo=repo)


def parse_source_string(source: str, workspace_root: Optional[Union[str, Path]] = None) -> SourceSpec:
    """Parse a member source string into a RemoteSource or LocalSource.

    Accepted forms:
        owner/repo                       -> https://github.com/owner/repo
        https://host/owner/repo(.git)    (also http, ssh, git, file)
        git@host:owner/repo(.git)
        any of the above + '#ref'
        ./path, ../path, /abs/path, ~/path, or an existing path under the root

    Raises:
        InvalidSourceError: when the string matches none of the forms
    """
    if not isinstance(source, str) or not source.strip():
        raise InvalidSourceError(str(source), "source is empty")
    source = source.strip()

    if _looks_local(source, workspace_root):
        return LocalSource(path=_resolve_local_path(source, workspace_root))

    base, ref = _split_ref(source)
    if not base:
        raise InvalidSourceError(source, "missing repository")

    if "://" in base:
        scheme = base.split("://", 1)[0].lower()
        if scheme not in URL_SCHEMES:
            raise InvalidSourceError(source, f"unsupported URL scheme '{scheme}'")
        url = base
    elif _SCP_RE.match(base):
        url = base
    elif _SHORTHAND_RE.match(base):
        url = f"https://{GITHUB_HOST}/{base}"
        return RemoteSource(url=url, ref=ref, repo_key=repo_key_from_url(url), shorthand=True)
    else:
        raise InvalidSourceError(source, "expected owner/repo, a git URL, or a local path")

    try:
        repo_key = repo_key_from_url(url)
    except NoCloneUrlResolvableError as e:
        raise InvalidSourceError(source, str(e)) from e
    return RemoteSource(url=url, ref=ref, repo_key=repo_key)


def require_remote(source: SourceSpec, raw: Optional[str] = None) -> RemoteSource:
    """Return source as a RemoteSource, rejecting local paths for store operations."""
    if isinstance(source, LocalSource):
        raise LocalPathNotAddableError(raw or source.path)
    return source


def resolve_clone_url(source: RemoteSource, git_protocol: str = "auto",
                      locked_url: Optional[str] = None) -> str:
    """Pick the URL to clone from.

    Protocol preference only rewrites GitHub shorthand sources; explicit URLs
    are always cloned as written. In 'auto' mode the lock file's URL wins
    while it still names the same repository as the source.
    """
    key = source.repo_key
    if git_protocol == "ssh" and source.shorthand:
        return f"git@{key.host}:{key.owner}/{key.repo}.git"
    if git_protocol == "https" and source.shorthand:
        return f"https://{key.host}/{key.owner}/{key.repo}.git"
    if git_protocol == "auto" and locked_url and same_repository(locked_url, key):
        return locked_url
    return source.url


def same_repository(url: Optional[str], repo_key: RepoKey) -> bool:
    """Whether url addresses the repository stored under repo_key."""
    if not url:
        return False
    try:
        return repo_key_from_url(url) == repo_key
    except NoCloneUrlResolvableError:
        return False
