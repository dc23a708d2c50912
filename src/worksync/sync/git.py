"""Synchronous facade over the git command line.

Every invocation is a GitCommand (an argument tuple, never a shell string)
executed with ``subprocess.run``; stdout, stderr and the exit code are
captured into a GitResult. Non-zero exits raise GitError carrying git's
raw diagnostic text, with two refinements:

- output that matches a known conflict or non-fast-forward signature
  raises MergeConflictError;
- an invocation that exceeds its timeout raises GitTimeoutError.

The operator never resolves conflicts, resets the working tree, rebases
or force-pushes. Whatever git leaves behind stays as-is.

Credentials are held in memory only. For HTTP(S) remotes the token is
passed to each network invocation through ``GIT_CONFIG_*`` environment
variables as an ``http.extraHeader``; it is never written to
``.git/config`` and every logged line passes through ``redact()``.
"""

from __future__ import annotations

import base64
import logging
import os
import re
import subprocess
from collections import Counter
from dataclasses import dataclass
from pathlib import Path

from worksync.sync.types import (
    AuthConfigurationError,
    BranchListing,
    ChangeKind,
    GitError,
    GitTimeoutError,
    InvalidWorkspaceError,
    MergeConflictError,
)

logger = logging.getLogger(__name__)

DEFAULT_REMOTE = "origin"
DEFAULT_COMMAND_TIMEOUT = 60.0
DEFAULT_NETWORK_TIMEOUT = 120.0

# Output fragments that mean manual reconciliation is required
CONFLICT_SIGNATURES = (
    "CONFLICT",
    "Automatic merge failed",
    "non-fast-forward",
    "[rejected]",
    "Updates were rejected",
    "fetch first",
    "would be overwritten by merge",
    "divergent branches",
    "unmerged files",
    "You have not concluded your merge",
)

AUTH_SIGNATURES = (
    "Authentication failed",
    "could not read Username",
    "could not read Password",
    "returned error: 401",
    "returned error: 403",
    "Permission denied (publickey)",
    "Invalid username or password",
)

_USERINFO_RE = re.compile(r"(?P<scheme>[a-zA-Z][a-zA-Z0-9+.-]*://)[^/@\s]+@")


@dataclass(frozen=True)
class GitCommand:
    """A single git invocation.

    Attributes:
        args: Arguments after ``git``.
        network: Whether the command talks to the remote (longer timeout,
            credential injection).
        input_data: Optional text written to stdin.
    """

    args: tuple[str, ...]
    network: bool = False
    input_data: str | None = None

    @property
    def argv(self) -> list[str]:
        """Full argument vector."""
        return ["git", *self.args]

    @property
    def name(self) -> str:
        """Git subcommand name."""
        return self.args[0] if self.args else ""


@dataclass(frozen=True)
class GitResult:
    """Captured outcome of a GitCommand."""

    command: GitCommand
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        """Whether git exited zero."""
        return self.returncode == 0

    @property
    def output(self) -> str:
        """Combined diagnostic text (stderr first)."""
        return "\n".join(part for part in (self.stderr.strip(), self.stdout.strip()) if part)


def is_conflict_output(text: str) -> bool:
    """Check git output for conflict or non-fast-forward signatures."""
    return any(signature in text for signature in CONFLICT_SIGNATURES)


def is_auth_failure(text: str) -> bool:
    """Check git output for authentication failure signatures."""
    return any(signature in text for signature in AUTH_SIGNATURES)


def validate_token(token: str) -> None:
    """Reject malformed bearer tokens.

    Raises:
        AuthConfigurationError: If the token is empty or contains
            whitespace or control characters.
    """
    if not token:
        raise AuthConfigurationError("Credential is empty")
    if any(ch.isspace() or ord(ch) < 0x20 or ord(ch) == 0x7F for ch in token):
        raise AuthConfigurationError("Credential contains whitespace or control characters")


class GitOperator:
    """Thin synchronous git facade for one workspace.

    The operator itself does not lock; SyncController serializes all
    mutating calls for a workspace.

    Example:
        >>> git = GitOperator(Path("/work/app"), "https://github.com/acme/app.git")
        >>> git.configure_remote_auth(token)
        >>> git.ensure_repository("main")
        >>> git.stage_all()
        >>> if git.has_staged_changes():
        ...     git.commit("Update")
        ...     git.push("main")
    """

    def __init__(
        self,
        workspace_path: Path,
        repository_url: str = "",
        *,
        remote: str = DEFAULT_REMOTE,
        command_timeout: float = DEFAULT_COMMAND_TIMEOUT,
        network_timeout: float = DEFAULT_NETWORK_TIMEOUT,
    ) -> None:
        """Initialize the operator.

        Args:
            workspace_path: Root of the working tree.
            repository_url: Remote URL; empty for a local-only workspace.
            remote: Remote name to use.
            command_timeout: Timeout for local commands in seconds.
            network_timeout: Timeout for commands that reach the remote.
        """
        self._path = Path(workspace_path)
        self._repository_url = repository_url
        self._remote = remote
        self._command_timeout = command_timeout
        self._network_timeout = network_timeout
        self._token: str | None = None

    @property
    def workspace_path(self) -> Path:
        """Root of the working tree."""
        return self._path

    @property
    def remote(self) -> str:
        """Remote name."""
        return self._remote

    @property
    def repository_url(self) -> str:
        """Configured remote URL."""
        return self._repository_url

    # ------------------------------------------------------------------
    # Invocation
    # ------------------------------------------------------------------

    def redact(self, text: str) -> str:
        """Mask the credential and URL userinfo in text destined for logs or errors."""
        if not text:
            return text
        if self._token:
            text = text.replace(self._token, "***")
            text = text.replace(self._auth_header_value(), "***")
        return _USERINFO_RE.sub(r"\g<scheme>***@", text)

    def _auth_header_value(self) -> str:
        raw = f"x-access-token:{self._token}".encode()
        return base64.b64encode(raw).decode("ascii")

    def _uses_http(self) -> bool:
        return self._repository_url.startswith(("https://", "http://"))

    def _env(self, network: bool) -> dict[str, str]:
        env = dict(os.environ)
        env["GIT_TERMINAL_PROMPT"] = "0"
        env["LC_ALL"] = "C"
        if network and self._token and self._uses_http():
            env["GIT_CONFIG_COUNT"] = "1"
            env["GIT_CONFIG_KEY_0"] = "http.extraHeader"
            env["GIT_CONFIG_VALUE_0"] = f"Authorization: Basic {self._auth_header_value()}"
        return env

    def run(
        self,
        command: GitCommand,
        *,
        check: bool = True,
        cwd: Path | None = None,
    ) -> GitResult:
        """Execute a git command.

        Args:
            command: Command to run.
            check: Raise on non-zero exit.
            cwd: Working directory (defaults to the workspace).

        Returns:
            The captured GitResult.

        Raises:
            GitError: Non-zero exit (when check is True) or git missing.
            MergeConflictError: Non-zero exit with conflict signatures.
            GitTimeoutError: Command exceeded its timeout.
        """
        argv = command.argv
        printable = self.redact(" ".join(argv))
        timeout = self._network_timeout if command.network else self._command_timeout

        logger.debug("Running git command: %s", printable)

        try:
            proc = subprocess.run(
                argv,
                cwd=cwd or self._path,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=timeout,
                input=command.input_data,
                env=self._env(command.network),
            )
        except subprocess.TimeoutExpired as e:
            raise GitTimeoutError(
                f"Git command timed out after {timeout:.0f}s: {printable}",
                command=self.redact_argv(argv),
            ) from e
        except FileNotFoundError as e:
            raise GitError("git not found in PATH", command=self.redact_argv(argv)) from e

        result = GitResult(
            command=command,
            returncode=proc.returncode,
            stdout=proc.stdout or "",
            stderr=proc.stderr or "",
        )

        if check and not result.ok:
            raise self._failure(result)

        return result

    def redact_argv(self, argv: list[str]) -> list[str]:
        """Redact each element of an argument vector."""
        return [self.redact(arg) for arg in argv]

    def _failure(self, result: GitResult) -> GitError:
        """Build the typed error for a failed result."""
        diagnostic = self.redact(result.output)
        argv = self.redact_argv(result.command.argv)
        message = f"Git command failed: git {result.command.name}"

        if is_conflict_output(diagnostic):
            logger.warning("%s reported a conflict: %s", message, diagnostic)
            return MergeConflictError(message, command=argv, stderr=diagnostic)

        return GitError(message, command=argv, stderr=diagnostic)

    def _git(
        self,
        *args: str,
        network: bool = False,
        check: bool = True,
        input_data: str | None = None,
    ) -> str:
        """Run a git command and return stripped stdout."""
        result = self.run(
            GitCommand(args=args, network=network, input_data=input_data),
            check=check,
        )
        return result.stdout.strip()

    # ------------------------------------------------------------------
    # Repository setup and auth
    # ------------------------------------------------------------------

    def is_repository(self) -> bool:
        """Whether the workspace root is itself a git working tree."""
        return (self._path / ".git").exists()

    def has_remote(self) -> bool:
        """Whether the configured remote exists in the repository."""
        result = self.run(GitCommand(("remote", "get-url", self._remote)), check=False)
        return result.ok

    def ensure_repository(
        self,
        branch: str,
        author_name: str = "worksync",
        author_email: str = "worksync@localhost",
    ) -> None:
        """Make sure the workspace is a repository wired to the remote.

        - An empty directory with a repository URL is cloned into.
        - Any other non-repository directory is initialized in place.
        - An existing repository gets its remote added or its URL updated.

        Args:
            branch: Branch the workspace should be on.
            author_name: Identity to configure if none is set.
            author_email: Identity to configure if none is set.

        Raises:
            InvalidWorkspaceError: Path missing, not a directory, or the
                repository could not be prepared.
        """
        if not self._path.exists():
            raise InvalidWorkspaceError(f"Workspace path does not exist: {self._path}")
        if not self._path.is_dir():
            raise InvalidWorkspaceError(f"Workspace path is not a directory: {self._path}")

        self.validate_branch_name(branch)

        try:
            if not self.is_repository():
                if self._repository_url and not any(self._path.iterdir()):
                    logger.info("Cloning %s into %s", self.redact(self._repository_url), self._path)
                    self._git("clone", "--", self._repository_url, ".", network=True)
                else:
                    logger.info("Initializing git repository in %s", self._path)
                    self._git("init")
                    if self._repository_url:
                        self._git("remote", "add", self._remote, self._repository_url)
            elif self._repository_url:
                self._ensure_remote_url()

            self._ensure_identity(author_name, author_email)
            self._ensure_branch(branch)
        except GitError as e:
            raise InvalidWorkspaceError(
                f"Could not prepare repository at {self._path}: {e}"
            ) from e

    def _ensure_remote_url(self) -> None:
        result = self.run(GitCommand(("remote", "get-url", self._remote)), check=False)
        if not result.ok:
            self._git("remote", "add", self._remote, self._repository_url)
        elif result.stdout.strip() != self._repository_url:
            logger.info("Updating %s URL for %s", self._remote, self._path)
            self._git("remote", "set-url", self._remote, self._repository_url)

    def _ensure_identity(self, author_name: str, author_email: str) -> None:
        if not self._git("config", "user.email", check=False):
            self._git("config", "user.email", author_email)
        if not self._git("config", "user.name", check=False):
            self._git("config", "user.name", author_name)

    def _ensure_branch(self, branch: str) -> None:
        current = self.current_branch()
        if current == branch:
            return
        if not self.head_commit():
            # Unborn HEAD: just point it at the tracked branch
            self._git("symbolic-ref", "HEAD", f"refs/heads/{branch}")
            return
        self.switch_branch(branch, create_if_missing=True)

    def configure_remote_auth(self, token: str | None) -> None:
        """Store the access credential for subsequent network commands.

        Args:
            token: Opaque bearer token, or None for remotes that need none.

        Raises:
            AuthConfigurationError: If the token is malformed.
        """
        if token is None:
            self._token = None
            return
        validate_token(token)
        self._token = token
        if not self._uses_http():
            logger.debug("Remote is not HTTP(S); credential will not be sent")

    def verify_remote_access(self) -> bool:
        """Probe the remote with ``ls-remote``.

        Returns:
            True if the remote answered, False on a tolerated failure.

        Raises:
            AuthConfigurationError: If the remote rejected the credential.
        """
        if not self._repository_url:
            return True

        result = self.run(
            GitCommand(("ls-remote", "--heads", self._remote), network=True),
            check=False,
        )
        if result.ok:
            return True

        diagnostic = self.redact(result.output)
        if is_auth_failure(diagnostic):
            raise AuthConfigurationError(f"Remote rejected credential: {diagnostic}")

        logger.warning("Remote %s not reachable yet: %s", self._remote, diagnostic)
        return False

    def validate_branch_name(self, name: str) -> None:
        """Reject names git would not accept as a branch.

        Raises:
            GitError: If the name is invalid.
        """
        if not name or name.startswith("-"):
            raise GitError(f"Invalid branch name: {name!r}")
        result = self.run(GitCommand(("check-ref-format", "--branch", name)), check=False)
        if not result.ok:
            raise GitError(f"Invalid branch name: {name!r}", stderr=result.output)

    # ------------------------------------------------------------------
    # Staging and committing
    # ------------------------------------------------------------------

    def stage_all(self) -> None:
        """Stage every change in the working tree, including deletions."""
        self._git("add", "-A")

    def has_staged_changes(self) -> bool:
        """Whether the index differs from HEAD."""
        result = self.run(GitCommand(("diff", "--cached", "--quiet")), check=False)
        if result.returncode not in (0, 1):
            raise self._failure(result)
        return result.returncode == 1

    def staged_summary(self) -> Counter[ChangeKind]:
        """Count staged changes by kind.

        Renames and type changes count as modifications, copies as additions.
        """
        summary: Counter[ChangeKind] = Counter()
        output = self._git("diff", "--cached", "--name-status")
        for line in output.splitlines():
            status = line[:1]
            if status in ("A", "C"):
                summary[ChangeKind.ADDED] += 1
            elif status == "D":
                summary[ChangeKind.DELETED] += 1
            elif status in ("M", "R", "T"):
                summary[ChangeKind.MODIFIED] += 1
        return summary

    def commit(self, message: str) -> str:
        """Create a commit from the index.

        The message is passed on stdin, never on the command line.

        Returns:
            The new HEAD commit hash.
        """
        self._git("commit", "--quiet", "-F", "-", input_data=message)
        sha = self.head_commit()
        logger.info("Committed %s in %s", sha[:12], self._path)
        return sha

    # ------------------------------------------------------------------
    # Remote synchronization
    # ------------------------------------------------------------------

    def fetch(self) -> None:
        """Fetch from the remote. No-op without a remote."""
        if not self.has_remote():
            return
        self._git("fetch", "--prune", self._remote, network=True)

    def pull(self, branch: str) -> bool:
        """Merge the remote branch into the current branch.

        Skipped when there is no remote or the remote branch does not
        exist yet (for example an empty repository).

        Returns:
            True if a pull ran, False if skipped.

        Raises:
            MergeConflictError: If git reports a conflict.
        """
        if not self.has_remote():
            return False
        if not self.remote_commit(branch):
            logger.debug("Remote branch %s/%s does not exist; skipping pull", self._remote, branch)
            return False
        self._git("pull", "--no-rebase", "--no-edit", self._remote, branch, network=True)
        return True

    def push(self, branch: str, set_upstream: bool = False) -> None:
        """Push a local branch to the remote. Never forces.

        Raises:
            MergeConflictError: If the push is rejected as non-fast-forward.
        """
        if not self.has_remote():
            return
        args = ["push"]
        if set_upstream:
            args.append("--set-upstream")
        args.extend([self._remote, branch])
        self._git(*args, network=True)

    def has_unpushed_commits(self, branch: str) -> bool:
        """Whether HEAD holds commits the remote branch does not have.

        Always False without a remote.
        """
        if not self.has_remote():
            return False
        head = self.head_commit()
        if not head:
            return False
        remote = self.remote_commit(branch)
        return not remote or not self.is_ancestor(head, remote)

    # ------------------------------------------------------------------
    # Branches
    # ------------------------------------------------------------------

    def branch_exists(self, name: str) -> bool:
        """Whether a local branch exists."""
        result = self.run(
            GitCommand(("show-ref", "--verify", "--quiet", f"refs/heads/{name}")),
            check=False,
        )
        return result.ok

    def current_branch(self) -> str:
        """Current branch name, or empty string when HEAD is detached."""
        return self._git("symbolic-ref", "--short", "-q", "HEAD", check=False)

    def create_branch(self, name: str) -> None:
        """Create a branch from HEAD and switch to it."""
        self.validate_branch_name(name)
        self._git("checkout", "-b", name)
        logger.info("Created branch %s in %s", name, self._path)

    def switch_branch(self, name: str, create_if_missing: bool = False) -> None:
        """Switch to an existing local or remote-tracking branch.

        Args:
            name: Branch to switch to.
            create_if_missing: Create the branch from HEAD when it exists
                neither locally nor on the remote.

        Raises:
            GitError: If the branch does not exist or checkout fails.
        """
        self.validate_branch_name(name)
        if self.branch_exists(name):
            self._git("checkout", name)
        elif self.remote_commit(name):
            self._git("checkout", "-b", name, "--track", f"{self._remote}/{name}")
        elif create_if_missing:
            self._git("checkout", "-b", name)
        else:
            raise GitError(f"Branch not found: {name}")
        logger.info("Switched to branch %s in %s", name, self._path)

    def list_branches(self) -> BranchListing:
        """List the current, local and remote branches."""
        local = self._git(
            "for-each-ref", "--format=%(refname:short)", "refs/heads"
        ).splitlines()

        prefix = f"refs/remotes/{self._remote}/"
        remote_refs = self._git(
            "for-each-ref", "--format=%(refname)", prefix.rstrip("/")
        ).splitlines()
        remote = [
            ref[len(prefix):]
            for ref in remote_refs
            if ref.startswith(prefix) and ref[len(prefix):] != "HEAD"
        ]

        return BranchListing(
            current=self.current_branch(),
            local=[b for b in local if b],
            remote=remote,
        )

    # ------------------------------------------------------------------
    # Commit inspection
    # ------------------------------------------------------------------

    def head_commit(self) -> str:
        """Hash of HEAD, or empty string on an unborn branch."""
        return self._git("rev-parse", "--verify", "-q", "HEAD", check=False)

    def remote_commit(self, branch: str) -> str:
        """Hash of the remote-tracking branch, or empty string if absent."""
        return self._git(
            "rev-parse",
            "--verify",
            "-q",
            f"refs/remotes/{self._remote}/{branch}^{{commit}}",
            check=False,
        )

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        """Whether ``ancestor`` is reachable from ``descendant``."""
        result = self.run(
            GitCommand(("merge-base", "--is-ancestor", ancestor, descendant)),
            check=False,
        )
        if result.returncode not in (0, 1):
            raise self._failure(result)
        return result.returncode == 0

    def changed_paths(self, base: str, target: str) -> set[str]:
        """Paths changed on ``target`` since its merge base with ``base``.

        An empty ``base`` lists every path in ``target``.
        """
        if not base:
            output = self._git("ls-tree", "-r", "--name-only", "-z", target)
        else:
            output = self._git("diff", "--name-only", "-z", f"{base}...{target}")
        return {path for path in output.split("\0") if path}

    def dirty_paths(self) -> set[str]:
        """Paths with uncommitted changes (staged, unstaged or untracked)."""
        output = self.run(
            GitCommand(("status", "--porcelain=v1", "-z", "--untracked-files=all"))
        ).stdout
        paths: set[str] = set()
        entries = iter(output.split("\0"))
        for entry in entries:
            if len(entry) < 4:
                continue
            status, path = entry[:2], entry[3:]
            paths.add(path)
            if status[0] in ("R", "C"):
                # Renames and copies carry the original path as the next entry
                original = next(entries, "")
                if original:
                    paths.add(original)
        return paths
