"""Source fetch: validate a repository URL and shallow-clone it.

Security:
  - URLs are validated with validate_repo_url() before any subprocess is
    spawned: https only, host must be on the configured allowlist, and
    the path must name an owner and a repository.
  - The access token is spliced into the clone URL only for the git
    invocation itself; logs and error messages see the redacted form.
"""

import logging
import os
from pathlib import Path
from typing import Iterable
from urllib.parse import urlparse, urlunparse

from zenith.core.errors import FetchError, ValidationError
from zenith.core.names import validate_repo_name
from zenith.runner.process import ProcessRunner

logger = logging.getLogger(__name__)


def redact_repo_url(url: str) -> str:
    """Return a clone URL safe to write into logs.

    Masks embedded credentials (e.g. access tokens) while preserving
    host/path context useful for debugging.
    """
    parsed = urlparse(url)
    if parsed.username is None:
        return url

    host = parsed.hostname or ""
    if not host:
        return url

    port = f":{parsed.port}" if parsed.port else ""
    if parsed.password is not None:
        auth = f"{parsed.username}:***@"
    else:
        auth = "***@"

    return urlunparse(parsed._replace(netloc=f"{auth}{host}{port}"))


def derive_repo_name(url: str) -> str:
    """Derive the repository name from the last path segment of ``url``.

    ``https://github.com/acme/widget.git/`` -> ``widget``
    """
    path = urlparse(url).path.rstrip("/")
    name = path.rsplit("/", 1)[-1]
    if name.endswith(".git"):
        name = name[: -len(".git")]
    return validate_repo_name(name)


def validate_repo_url(url: str, allowed_hosts: Iterable[str] = ()) -> str:
    """Validate a repository URL before cloning and return its name.

    Blocks:
      - Non-HTTPS schemes (http://, git://, file://, ssh://)
      - URLs that already embed credentials
      - Hosts outside ``allowed_hosts`` (when the allowlist is non-empty)
      - Paths that do not name an owner and a repository

    Raises:
        ValidationError: if the URL is unusable.
    """
    if not url or not url.strip():
        raise ValidationError("Repository URL must not be empty")

    parsed = urlparse(url.strip())
    safe_url = redact_repo_url(url)

    if parsed.scheme != "https":
        raise ValidationError(
            f"Repository URL must use HTTPS (got scheme '{parsed.scheme}'): {safe_url}"
        )
    if parsed.username is not None or parsed.password is not None:
        raise ValidationError(f"Repository URL must not embed credentials: {safe_url}")

    hostname = (parsed.hostname or "").lower()
    if not hostname:
        raise ValidationError(f"Repository URL has no hostname: {safe_url}")

    hosts = {h.lower() for h in allowed_hosts}
    if hosts and hostname not in hosts:
        raise ValidationError(
            f"Repository host '{hostname}' is not allowed (allowed: {', '.join(sorted(hosts))})"
        )

    segments = [s for s in parsed.path.split("/") if s]
    if len(segments) < 2:
        raise ValidationError(f"Repository URL must name an owner and repository: {safe_url}")
    if any(s == ".." for s in segments) or parsed.query or parsed.fragment:
        raise ValidationError(f"Malformed repository URL: {safe_url}")

    return derive_repo_name(url.strip())


def authenticated_clone_url(url: str, token: str) -> str:
    """Build the HTTPS clone URL, embedding ``token`` when one is configured."""
    parsed = urlparse(url.strip())
    path = parsed.path.rstrip("/")
    if not path.endswith(".git"):
        path += ".git"
    netloc = parsed.netloc
    if token:
        netloc = f"x-access-token:{token}@{netloc}"
    return urlunparse(parsed._replace(netloc=netloc, path=path))


def clone_repo(
    runner: ProcessRunner,
    repo_url: str,
    dest: Path,
    token: str = "",
    timeout: int = 300,
    depth: int = 1,
) -> Path:
    """Shallow-clone ``repo_url`` into ``dest`` (which must not exist yet).

    Returns the path to the cloned repo root.

    Raises:
        FetchError: if git exits non-zero (unknown repo, bad credential,
            network failure, timeout).
    """
    clone_url = authenticated_clone_url(repo_url, token)
    dest = Path(dest)
    dest.parent.mkdir(parents=True, exist_ok=True)

    logger.info("Cloning %s into %s", redact_repo_url(clone_url), dest)
    result = runner.run(
        "clone",
        ["git", "clone", "--depth", str(depth), clone_url, str(dest)],
        timeout=timeout,
        env=_git_env(),
        redact=[token],
    )

    if not result.is_success:
        raise FetchError(
            f"git clone failed (exit {result.exit_code}): {result.output_tail(max_lines=10)}",
            detail={"url": redact_repo_url(clone_url)},
        )

    logger.info("Clone complete: %s", dest)
    return dest


def _git_env() -> dict:
    env = dict(os.environ)
    # Fail instead of blocking on an interactive username/password prompt.
    env["GIT_TERMINAL_PROMPT"] = "0"
    return env
