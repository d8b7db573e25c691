"""MediaStore backed by a GitHub repository, served through a CDN, via PyGithub."""

from __future__ import annotations

import asyncio
import logging
from functools import cached_property

from github import Auth, Github, GithubException
from github.Repository import Repository
from requests.exceptions import RequestException

from docrelay.config.models import GitHubStoreConfig
from docrelay.errors import StorageError
from docrelay.storage.naming import object_name, scope_path

logger = logging.getLogger(__name__)

# 422 ("sha" wasn't supplied) means the path already exists; content-addressed
# paths mean the bytes are identical.
_ALREADY_EXISTS = 422
# 409 is also returned when another commit moved the branch head, so the
# file only counts as stored once it can be read back.
_CONFLICT = 409


class GitHubStore:
    """Content-API store conforming to the MediaStore protocol.

    Files land at ``{path_prefix}{namespace}/{scope}/{hash}{ext}`` on the
    configured branch and are served from
    ``https://{cdn}/gh/{repo}@{branch}/{path_prefix}``.

    PyGithub is synchronous, so all blocking calls are wrapped
    with asyncio.to_thread() to avoid blocking the event loop.
    Writes are serialized: every create_file is a commit on the same
    branch, and concurrent commits conflict.
    """

    name = "github"

    def __init__(self, config: GitHubStoreConfig, token: str | None = None, client: Github | None = None):
        if not config.repo or "/" not in config.repo:
            raise ValueError(
                f"GitHub store requires storage.github.repo as 'owner/name', got {config.repo!r}"
            )
        if client is None and not token:
            raise ValueError(
                f"GitHub token required. Set the {config.token_env} environment variable."
            )
        self._config = config
        self._token = token
        self._injected_client = client
        self._written: set[str] = set()
        self._write_lock = asyncio.Lock()

    @cached_property
    def _client(self) -> Github:
        if self._injected_client is not None:
            return self._injected_client
        return Github(auth=Auth.Token(self._token))

    @cached_property
    def _repo(self) -> Repository:
        return self._client.get_repo(self._config.repo)

    # -- naming -----------------------------------------------------------

    def repo_path(self, relative: str) -> str:
        return f"{self._config.path_prefix}{relative}"

    def public_url(self, relative: str) -> str:
        return f"{self._config.cdn_base_url}{relative}"

    def owns(self, url: str) -> bool:
        return url.startswith(self._config.cdn_base_url)

    def _exists(self, path: str) -> bool:
        try:
            self._repo.get_contents(path, ref=self._config.branch)
        except GithubException as e:
            if e.status == 404:
                return False
            raise
        return True

    # -- MediaStore protocol ----------------------------------------------

    async def put(self, data: bytes, namespace: str, scope: str, filename_hint: str) -> str:
        name = object_name(data, filename_hint)
        relative = f"{scope_path(namespace, scope)}/{name}"
        url = self.public_url(relative)
        if relative in self._written:
            logger.debug("already stored %s, skipping upload", relative)
            return url

        path = self.repo_path(relative)

        def _sync() -> None:
            try:
                self._repo.create_file(
                    path,
                    f"Upload image: {name}",
                    data,
                    branch=self._config.branch,
                )
            except GithubException as e:
                if e.status == _ALREADY_EXISTS or (e.status == _CONFLICT and self._exists(path)):
                    logger.debug("%s already present in %s", path, self._config.repo)
                    return
                raise

        try:
            async with self._write_lock:
                await asyncio.to_thread(_sync)
        except GithubException as e:
            raise StorageError(
                self.name,
                f"create_file failed for {path}: HTTP {e.status}",
                retryable=e.status in (_CONFLICT, 429, 500, 502, 503),
            ) from e
        except RequestException as e:
            raise StorageError(
                self.name,
                f"create_file failed for {path}: {e.__class__.__name__}",
                retryable=True,
            ) from e

        self._written.add(relative)
        logger.info("stored %s (%d bytes) -> %s", filename_hint, len(data), url)
        return url

    async def delete_scope(self, namespace: str, scope: str) -> int:
        """List-then-delete every file under the scope folder.

        GitHub has no folder delete, so each file is removed individually.
        Best effort: listing or deletion failures are logged, never raised.
        """
        folder = self.repo_path(scope_path(namespace, scope))

        def _sync() -> int:
            try:
                pending = self._repo.get_contents(folder, ref=self._config.branch)
            except GithubException as e:
                if e.status == 404:
                    logger.debug("nothing to delete under %s", folder)
                else:
                    logger.warning("cannot list %s (HTTP %s); skipping delete", folder, e.status)
                return 0
            except RequestException as e:
                logger.warning("cannot list %s (%s); skipping delete", folder, e.__class__.__name__)
                return 0
            # get_contents returns a single item for files, list for dirs
            if not isinstance(pending, list):
                pending = [pending]

            deleted = 0
            while pending:
                item = pending.pop()
                try:
                    if item.type == "dir":
                        children = self._repo.get_contents(item.path, ref=self._config.branch)
                        pending.extend(children if isinstance(children, list) else [children])
                        continue
                    self._repo.delete_file(
                        item.path,
                        f"Delete image: {item.name}",
                        item.sha,
                        branch=self._config.branch,
                    )
                    deleted += 1
                except GithubException as e:
                    logger.warning("failed to delete %s (HTTP %s)", item.path, e.status)
                except RequestException as e:
                    logger.warning("failed to delete %s (%s)", item.path, e.__class__.__name__)
            return deleted

        async with self._write_lock:
            deleted = await asyncio.to_thread(_sync)
        prefix = scope_path(namespace, scope) + "/"
        self._written = {p for p in self._written if not p.startswith(prefix)}
        logger.info("deleted %d file(s) under %s", deleted, folder)
        return deleted
