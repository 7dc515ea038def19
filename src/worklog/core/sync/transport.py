"""
Git transport for worklog snapshots.

Moves the canonical data file through a git remote on a dedicated ref
without touching the working tree, the index, or the checked-out branch.

The implementation uses plumbing only:
- `git fetch +<ref>:<tracking-ref>` to mirror the remote ref locally
- `git cat-file` to read the data file out of the mirrored tree
- `git hash-object -w` to store a snapshot as a blob
- `git mktree` to build a tree containing only that blob
- `git commit-tree` to chain snapshots into a linear history
- `git push <commit>:<ref>` (never forced) to publish
"""

from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path, PurePosixPath

from worklog.core.sync.models import GitTarget

logger = logging.getLogger(__name__)

GIT_TIMEOUT = 60

# Push stderr fragments that mean the remote tip moved underneath us.
_REJECTION_MARKERS = (
    "[rejected]",
    "non-fast-forward",
    "fetch first",
    "cannot lock ref",
    "failed to update ref",
)


class GitError(Exception):
    """Exception raised when a git operation fails."""

    def __init__(
        self,
        message: str,
        command: list[str] | None = None,
        stderr: str = "",
        returncode: int | None = None,
    ):
        super().__init__(message)
        self.command = command
        self.stderr = stderr
        self.returncode = returncode


class TransportError(GitError):
    """The remote could not be reached or the ref could not be read or written."""


class PublishRejectedError(GitError):
    """The remote ref advanced since it was fetched (non-fast-forward)."""


class GitTransport:
    """
    Reads and publishes snapshots of one file on a dedicated git ref.

    Example:
        >>> transport = GitTransport(Path("."))
        >>> target = GitTarget(remote="origin", ref="refs/worklog/data")
        >>> data = transport.fetch_remote_snapshot(".worklog/worklog-data.jsonl", target)
        >>> transport.publish_snapshot(".worklog/worklog-data.jsonl", b"...", "Sync", target)
    """

    def __init__(self, repo_dir: Path | None = None) -> None:
        """
        Initialize the transport.

        Args:
            repo_dir: Any directory inside the git repository.
                      Defaults to current working directory.
        """
        self.repo_dir = (repo_dir or Path.cwd()).resolve()
        self._repo_root: Path | None = None

    def _run_git_raw(
        self,
        args: list[str],
        *,
        input_data: bytes | None = None,
    ) -> bytes:
        """
        Run a git command and return its raw stdout.

        Raises:
            GitError: If the command exits non-zero, times out, or git is missing.
        """
        cmd = ["git"] + args

        logger.debug("Running git command: %s", " ".join(cmd))

        env = dict(os.environ)
        env["GIT_TERMINAL_PROMPT"] = "0"

        try:
            result = subprocess.run(
                cmd,
                cwd=self.repo_dir,
                capture_output=True,
                timeout=GIT_TIMEOUT,
                input=input_data,
                env=env,
            )
        except subprocess.TimeoutExpired as e:
            raise GitError(f"Git command timed out: {' '.join(cmd)}", command=cmd) from e
        except FileNotFoundError as e:
            raise GitError("git not found in PATH", command=cmd) from e

        if result.returncode != 0:
            stderr = result.stderr.decode("utf-8", errors="replace").strip()
            raise GitError(
                f"Git command failed: {' '.join(cmd)}",
                command=cmd,
                stderr=stderr,
                returncode=result.returncode,
            )

        return result.stdout

    def _run_git(self, args: list[str], *, input_data: str | None = None) -> str:
        """Run a git command and return its stdout as stripped text."""
        raw = self._run_git_raw(
            args,
            input_data=input_data.encode("utf-8") if input_data is not None else None,
        )
        return raw.decode("utf-8", errors="replace").strip()

    @property
    def repo_root(self) -> Path:
        """Top level of the working tree."""
        if self._repo_root is None:
            try:
                top = self._run_git(["rev-parse", "--show-toplevel"])
            except GitError as e:
                raise TransportError(
                    f"Not a git repository: {self.repo_dir}", command=e.command, stderr=e.stderr
                ) from e
            self._repo_root = Path(top).resolve()
        return self._repo_root

    def repo_relative_path(self, file_path: Path | str) -> str:
        """
        Path of a data file inside snapshot trees.

        Args:
            file_path: Absolute path, or a path relative to repo_dir

        Returns:
            Repository-relative POSIX path, e.g. ".worklog/worklog-data.jsonl"

        Raises:
            TransportError: If the file lies outside the repository.
        """
        path = Path(file_path)
        if not path.is_absolute():
            path = self.repo_dir / path
        path = path.resolve()
        try:
            relative = path.relative_to(self.repo_root)
        except ValueError as e:
            raise TransportError(f"{path} is outside the repository {self.repo_root}") from e
        return relative.as_posix()

    def _ref_sha(self, ref: str) -> str | None:
        """Commit SHA a local ref points to, or None if it doesn't exist."""
        try:
            return self._run_git(["rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}"])
        except GitError:
            return None

    def tracking_tip(self, target: GitTarget) -> str | None:
        """SHA of the locally mirrored remote tip, as of the last fetch or publish."""
        return self._ref_sha(target.tracking_ref)

    def _remote_ref_exists(self, target: GitTarget) -> bool:
        """
        Ask the remote whether the ref exists.

        Raises:
            TransportError: If the remote cannot be queried at all.
        """
        try:
            output = self._run_git(["ls-remote", "--exit-code", target.remote, target.full_ref])
        except GitError as e:
            # ls-remote --exit-code reports "no matching refs" as status 2.
            if e.returncode == 2:
                return False
            raise TransportError(
                f"Failed to query {target.remote}: {e.stderr or e}",
                command=e.command,
                stderr=e.stderr,
                returncode=e.returncode,
            ) from e
        return bool(output)

    def _fetch_tracking_ref(self, target: GitTarget) -> str | None:
        """
        Mirror the remote ref into its tracking ref.

        Returns:
            The fetched tip SHA, or None if the ref does not exist remotely.

        Raises:
            TransportError: If the fetch fails for any reason other than a
                            missing ref.
        """
        refspec = f"+{target.full_ref}:{target.tracking_ref}"
        try:
            self._run_git(["fetch", "--no-tags", target.remote, refspec])
        except GitError as e:
            missing = "couldn't find remote ref" in e.stderr.lower()
            if not missing and self._remote_ref_exists(target):
                # Never treat an existing ref as absent: publishing a root
                # commit over it would fork the snapshot history.
                raise TransportError(
                    f"Failed to fetch existing remote ref {target.full_ref} from {target.remote}",
                    command=e.command,
                    stderr=e.stderr,
                    returncode=e.returncode,
                ) from e

            if self._ref_sha(target.tracking_ref) is not None:
                logger.info("Remote ref %s is gone, dropping stale tracking ref", target.full_ref)
                self._run_git(["update-ref", "-d", target.tracking_ref])
            return None

        tip = self._ref_sha(target.tracking_ref)
        if tip is None:
            raise TransportError(
                f"Fetched {target.full_ref} but could not resolve {target.tracking_ref}"
            )
        logger.debug("Fetched %s at %s", target.describe(), tip[:8])
        return tip

    def fetch_remote_snapshot(self, path: str, target: GitTarget) -> bytes | None:
        """
        Read the data file as published on the remote ref.

        Args:
            path: Repository-relative path of the data file
            target: Remote and ref to read from

        Returns:
            File bytes, or None if the ref or the file does not exist yet.

        Raises:
            TransportError: If the remote is unreachable or the ref cannot be fetched.
        """
        tip = self._fetch_tracking_ref(target)
        if tip is None:
            logger.info("No snapshot on %s yet", target.describe())
            return None

        try:
            blob_sha = self._run_git(["rev-parse", "--verify", "--quiet", f"{tip}:{path}"])
        except GitError:
            logger.info("Snapshot %s has no %s", tip[:8], path)
            return None

        return self._run_git_raw(["cat-file", "blob", blob_sha])

    def _create_tree_for_path(self, blob_sha: str, file_path: str) -> str:
        """
        Create a tree object hierarchy for a file at the given path.

        Git's mktree command doesn't handle paths with slashes. For nested
        paths like '.worklog/worklog-data.jsonl', build the innermost tree
        first and wrap it in one tree per parent directory.

        Returns:
            SHA of the root tree containing the nested structure.
        """
        parts = list(PurePosixPath(file_path).parts)

        tree_entry = f"100644 blob {blob_sha}\t{parts[-1]}\n"
        current_tree_sha = self._run_git(["mktree"], input_data=tree_entry)

        for dirname in reversed(parts[:-1]):
            tree_entry = f"040000 tree {current_tree_sha}\t{dirname}\n"
            current_tree_sha = self._run_git(["mktree"], input_data=tree_entry)

        return current_tree_sha

    def publish_snapshot(
        self,
        path: str,
        data: bytes,
        message: str,
        target: GitTarget,
    ) -> str | None:
        """
        Publish a new snapshot on the remote ref.

        The snapshot commit holds only the data file and has the last fetched
        remote tip as parent (a root commit when the ref is new). The push is
        never forced.

        Args:
            path: Repository-relative path of the data file
            data: Serialized snapshot
            message: Commit message
            target: Remote and ref to publish to

        Returns:
            SHA of the published commit, or None if the remote tip already
            holds an identical snapshot.

        Raises:
            PublishRejectedError: If the remote ref advanced since the last fetch.
            TransportError: If the push fails for any other reason.
        """
        parent_sha = self.tracking_tip(target)

        blob_sha = self._run_git_raw(["hash-object", "-w", "--stdin"], input_data=data)
        tree_sha = self._create_tree_for_path(blob_sha.decode("ascii").strip(), path)
        logger.debug("Created tree: %s", tree_sha)

        if parent_sha is not None:
            parent_tree = self._run_git(["rev-parse", f"{parent_sha}^{{tree}}"])
            if parent_tree == tree_sha:
                logger.info("Snapshot unchanged on %s, nothing to publish", target.describe())
                return None

        if parent_sha:
            commit_sha = self._run_git(["commit-tree", tree_sha, "-p", parent_sha, "-m", message])
        else:
            commit_sha = self._run_git(["commit-tree", tree_sha, "-m", message])
        logger.debug("Created commit: %s", commit_sha)

        try:
            self._run_git(["push", target.remote, f"{commit_sha}:{target.full_ref}"])
        except GitError as e:
            stderr = e.stderr.lower()
            if any(marker in stderr for marker in _REJECTION_MARKERS):
                raise PublishRejectedError(
                    f"Remote ref {target.full_ref} on {target.remote} advanced concurrently",
                    command=e.command,
                    stderr=e.stderr,
                    returncode=e.returncode,
                ) from e
            raise TransportError(
                f"Failed to push to {target.remote}: {e.stderr or e}",
                command=e.command,
                stderr=e.stderr,
                returncode=e.returncode,
            ) from e

        self._run_git(["update-ref", target.tracking_ref, commit_sha])
        logger.info("Published %s to %s", commit_sha[:8], target.describe())
        return commit_sha
