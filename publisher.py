import logging
import os
from pathlib import Path
from urllib.parse import urlsplit, urlunsplit

import git
from git import Actor
from git.exc import GitCommandError

from errors import UpstreamError


class GitPublisher:
    def __init__(self, repo_dir: Path, author_name: str, author_email: str, token: str,
                 remote: str = "origin", branch: str = "main"):
        self.repo_dir = Path(repo_dir)
        self.author = Actor(author_name, author_email)
        self.remote = remote
        self.branch = branch
        self._token = token
        self._repo = None

    @property
    def repo(self) -> git.Repo:
        if self._repo is None:
            self._repo = git.Repo(self.repo_dir)
        return self._repo

    def commit(self, path: Path, message: str) -> str:
        """Stage everything under ``path`` and commit it. Returns the commit sha."""
        relative = os.path.relpath(path, self.repo_dir)
        try:
            self.repo.git.add("--all", "--", relative)
            commit = self.repo.index.commit(message, author=self.author, committer=self.author)
        except GitCommandError as e:
            logging.error(f"Exception when committing {relative}: {e}")
            raise UpstreamError(f"Could not commit {relative}") from e
        logging.info(f"Committed {relative} as {commit.hexsha[:8]}: {message}")
        return commit.hexsha

    def push_url(self) -> str:
        url = self.repo.remote(self.remote).url
        parts = urlsplit(url)
        if parts.scheme not in ("http", "https") or not self._token:
            return url
        host = parts.netloc.rsplit("@", 1)[-1]
        return urlunsplit(parts._replace(netloc=f"{self._token}@{host}"))

    def push(self):
        try:
            self.repo.git.push(self.push_url(), f"HEAD:refs/heads/{self.branch}")
        except GitCommandError as e:
            # The command line carries the token
            logging.error(f"Exception when pushing to {self.remote}/{self.branch}: exit status {e.status}")
            raise UpstreamError(f"Could not push to {self.remote}/{self.branch}") from None
        logging.info(f"Pushed to {self.remote}/{self.branch}.")

    def undo_commit(self, sha: str):
        """Drop ``sha`` from the branch, leaving the working tree for the caller to restore."""
        head = self.repo.head.commit
        if head.hexsha != sha:
            logging.warning(f"HEAD moved past {sha[:8]}, leaving history untouched.")
            return
        if not head.parents:
            logging.warning(f"{sha[:8]} is the root commit, leaving history untouched.")
            return
        self.repo.git.reset("--mixed", "HEAD~1")
        logging.info(f"Reset local commit {sha[:8]}.")
