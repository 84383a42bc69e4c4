"""Git-backed repository reader."""

import logging
import shutil
import subprocess
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Any, Optional, Union

from .signals import FileChange

logger = logging.getLogger(__name__)

# Base ref used when the repository has no commits at all.
EMPTY = "EMPTY"
# Hash of the empty tree object, valid in every git repository.
EMPTY_TREE = "4b825dc642cb6eb9a060e54bf8d69288fbee4904"

GIT_TIMEOUT = 300


class GitError(Exception):
    """Exception raised when git is missing or a git command fails."""

    def __init__(self, message: str, returncode: Optional[int] = None, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.returncode = returncode
        self.details = details
        super().__init__(self.message)


@dataclass(frozen=True)
class RefRange:
    """A resolved ``(base, target)`` pair ready for diffing."""

    base: str
    target: str
    base_sha: Optional[str]
    target_sha: Optional[str]
    base_type: str
    empty_repo: bool = False
    single_commit: bool = False

    @property
    def diff_base(self) -> str:
        return EMPTY_TREE if self.empty_repo or self.base_sha is None else self.base_sha

    @property
    def diff_target(self) -> str:
        return self.target_sha or self.target


def build_pathspecs(only_paths: Optional[str]) -> list[str]:
    """Turn ``src,include,!vendor`` into git pathspecs."""
    specs = []
    for item in (only_paths or "").split(","):
        item = item.strip()
        if not item:
            continue
        if item.startswith("!"):
            if item[1:].strip():
                specs.append(f":(exclude){item[1:].strip()}")
        else:
            specs.append(item)
    return specs


def _unquote(path: str) -> str:
    path = path.rstrip("\t")
    if len(path) >= 2 and path[0] == path[-1] == '"':
        path = path[1:-1].replace('\\"', '"').replace("\\\\", "\\")
    return path


def _patch_path(lines: list[str]) -> str:
    """Path of the post-image for one ``diff --git`` section."""
    for line in lines:
        if line.startswith("+++ ") and line[4:] != "/dev/null":
            return _unquote(line[4:])[2:]
        if line.startswith(("rename to ", "copy to ")):
            return _unquote(line.split(" to ", 1)[1])
    for line in lines:
        if line.startswith("--- ") and line[4:] != "/dev/null":
            return _unquote(line[4:])[2:]
    header = lines[0][len("diff --git ") :]
    half = len(header) // 2
    return _unquote(header[half + 1 :])[2:]


def split_patch(text: str) -> dict[str, str]:
    """Split ``git diff`` patch output into per-file sections keyed by path."""
    sections: dict[str, str] = {}
    current: list[str] = []
    for line in text.splitlines():
        if line.startswith("diff --git ") and current:
            sections[_patch_path(current)] = "\n".join(current)
            current = []
        current.append(line)
    if current and current[0].startswith("diff --git "):
        sections[_patch_path(current)] = "\n".join(current)
    return sections


def parse_name_status(output: str) -> list[tuple[str, str, Optional[str]]]:
    """Parse ``--name-status -z`` output into ``(status, path, old_path)``."""
    tokens = output.split("\0")
    records = []
    i = 0
    while i < len(tokens) and tokens[i]:
        status = tokens[i]
        if status[0] in "RC":
            records.append((status[0], tokens[i + 2], tokens[i + 1]))
            i += 3
        else:
            records.append((status[0], tokens[i + 1], None))
            i += 2
    return records


def parse_numstat(output: str) -> dict[str, tuple[int, int, bool]]:
    """Parse ``--numstat -z`` output into ``path -> (added, removed, binary)``."""
    tokens = output.split("\0")
    stats = {}
    i = 0
    while i < len(tokens) and tokens[i]:
        added, removed, path = tokens[i].split("\t", 2)
        i += 1
        if not path:
            # rename/copy: the paths follow as two separate fields
            path = tokens[i + 1]
            i += 2
        binary = added == "-" or removed == "-"
        stats[path] = (0 if binary else int(added), 0 if binary else int(removed), binary)
    return stats


class GitRepository:
    """Reader for the working repository, one ``git`` subprocess per query."""

    def __init__(self, root: Optional[Union[str, Path]] = None, git: str = "git"):
        """Initialize the reader.

        Args:
            root: Directory inside the repository. Defaults to the current directory.
            git: Name or path of the git executable.
        """
        self.root = Path(root) if root else Path.cwd()
        self.git = shutil.which(git)
        if not self.git:
            raise GitError(f"git executable not found: {git}")

    def _git(self, *args: str, check: bool = True) -> subprocess.CompletedProcess:
        """Run a git command in the repository.

        Raises:
            GitError: If git cannot be run, times out, or exits non-zero with ``check``
        """
        cmd = [self.git, "-c", "core.quotepath=false", *args]
        logger.debug("running %s", " ".join(cmd))
        try:
            proc = subprocess.run(
                cmd,
                cwd=self.root,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=GIT_TIMEOUT,
            )
        except subprocess.TimeoutExpired as e:
            raise GitError(f"git {args[0]} timed out after {GIT_TIMEOUT}s") from e
        except OSError as e:
            raise GitError(f"Failed to run git: {str(e)}") from e

        if check and proc.returncode != 0:
            stderr = proc.stderr.strip()
            raise GitError(
                stderr.splitlines()[-1] if stderr else f"git {args[0]} failed",
                returncode=proc.returncode,
                details={"command": " ".join(cmd[3:]), "stderr": stderr},
            )
        return proc

    def toplevel(self) -> Path:
        return Path(self._git("rev-parse", "--show-toplevel").stdout.strip())

    def has_commits(self) -> bool:
        return self._git("rev-parse", "--verify", "--quiet", "HEAD", check=False).returncode == 0

    def resolve(self, ref: str) -> str:
        """Resolve a ref to a commit SHA.

        Raises:
            GitError: If the ref does not name a commit
        """
        proc = self._git("rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}", check=False)
        if proc.returncode != 0 or not proc.stdout.strip():
            raise GitError(f"Unknown ref: {ref}", returncode=proc.returncode)
        return proc.stdout.strip()

    def try_resolve(self, ref: str) -> Optional[str]:
        try:
            return self.resolve(ref)
        except GitError:
            return None

    def last_tag(self, match: str = "*", target: str = "HEAD") -> Optional[str]:
        proc = self._git("describe", "--tags", "--abbrev=0", "--match", match, target, check=False)
        if proc.returncode != 0:
            return None
        return proc.stdout.strip() or None

    def root_commit(self, target: str = "HEAD") -> str:
        lines = self._git("rev-list", "--max-parents=0", target).stdout.split()
        if not lines:
            raise GitError(f"No root commit reachable from {target}")
        return lines[-1]

    def commit_count(self, target: str = "HEAD") -> int:
        return int(self._git("rev-list", "--count", target).stdout.strip() or 0)

    def commit_before(self, day: Union[date, datetime], target: str = "HEAD") -> Optional[str]:
        """Latest commit reachable from ``target`` made on or before ``day``."""
        cutoff = f"{day:%Y-%m-%d} 23:59:59"
        return self._git("rev-list", "-1", f"--before={cutoff}", target).stdout.strip() or None

    def merge_base(self, a: str, b: str) -> Optional[str]:
        proc = self._git("merge-base", a, b, check=False)
        if proc.returncode == 1:
            return None
        if proc.returncode != 0:
            raise GitError(f"merge-base {a} {b} failed", returncode=proc.returncode, details={"stderr": proc.stderr})
        return proc.stdout.strip()

    def resolve_range(
        self,
        base: Optional[str] = None,
        target: str = "HEAD",
        since_commit: Optional[str] = None,
        since_tag: Optional[str] = None,
        since_date: Optional[Union[date, datetime]] = None,
        tag_match: str = "*",
        use_merge_base: bool = True,
    ) -> RefRange:
        """Pick the base ref and normalize the pair.

        Priority: explicit base, since-commit, since-tag, since-date, last
        matching tag, the target's parent, then the root commit.

        Raises:
            GitError: If a ref cannot be resolved or base and target share no history
        """
        if not self.has_commits():
            logger.info("repository has no commits")
            return RefRange(EMPTY, target, None, None, "empty", empty_repo=True)

        target_sha = self.resolve(target)
        single_commit = False

        if base:
            base_ref, base_type = base, "explicit_base"
        elif since_commit:
            base_ref, base_type = since_commit, "commit"
        elif since_tag:
            base_ref, base_type = since_tag, "tag"
        elif since_date:
            base_ref = self.commit_before(since_date, target_sha)
            base_type = "date"
            if base_ref is None:
                base_ref, base_type = self.root_commit(target_sha), "first"
        else:
            tag = self.last_tag(tag_match, target)
            if tag:
                base_ref, base_type = tag, "last_tag"
            elif self.try_resolve(f"{target_sha}~1"):
                base_ref, base_type = f"{target}~1", "parent"
            else:
                base_ref, base_type = self.root_commit(target_sha), "first"
                single_commit = True

        base_sha = self.resolve(base_ref)

        if use_merge_base and base_sha != target_sha:
            common = self.merge_base(base_sha, target_sha)
            if common is None:
                if self.commit_count(target_sha) == 1:
                    single_commit = True
                    base_sha = target_sha
                else:
                    raise GitError(f"No common ancestor between {base_ref} and {target}")
            elif common != base_sha:
                logger.debug("base %s normalized to merge-base %s", base_ref, common)
                base_sha, base_type = common, "merge_base"

        logger.debug("range %s (%s) .. %s", base_ref, base_type, target)
        return RefRange(base_ref, target, base_sha, target_sha, base_type, single_commit=single_commit)

    def _diff_args(self, base: str, target: str, paths, ignore_whitespace: bool, *extra: str) -> list[str]:
        args = ["diff", "--no-color", "--no-ext-diff", "--src-prefix=a/", "--dst-prefix=b/", "-M", "-C", *extra]
        if ignore_whitespace:
            args.append("-w")
        return [*args, base, target, "--", *paths]

    def diff_files(
        self, base: str, target: str, paths: tuple[str, ...] | list[str] = (), ignore_whitespace: bool = False
    ) -> list[FileChange]:
        """Per-file change records between two refs.

        Args:
            base: Base commit, or ``EMPTY`` for an empty tree
            target: Target commit
            paths: Optional pathspecs restricting the diff
            ignore_whitespace: Ignore whitespace-only changes

        Returns:
            One FileChange per changed path
        """
        if base == EMPTY:
            base = EMPTY_TREE
        def run(*extra: str) -> str:
            return self._git(*self._diff_args(base, target, paths, ignore_whitespace, *extra)).stdout

        names = parse_name_status(run("--name-status", "-z"))
        stats = parse_numstat(run("--numstat", "-z"))
        patches = split_patch(run("-U0"))

        changes = []
        for status, path, old_path in names:
            added, removed, binary = stats.get(path, (0, 0, False))
            changes.append(
                FileChange(
                    path=path,
                    status=status,
                    added_lines=added,
                    removed_lines=removed,
                    old_path=old_path,
                    is_binary=binary,
                    diff_text="" if binary else patches.get(path, ""),
                )
            )
        logger.debug("%d changed file(s) between %s and %s", len(changes), base, target)
        return changes

    def commit_messages(self, base: str, target: str, no_merges: bool = False) -> list[str]:
        """Full messages of the commits reachable from target but not from base."""
        args = ["log", "--format=%B%x00"]
        if no_merges:
            args.append("--no-merges")
        if base in (EMPTY, EMPTY_TREE):
            args.append(target)
        else:
            args.append(f"{base}..{target}")
        output = self._git(*args, "--").stdout
        return [m.strip() for m in output.split("\0") if m.strip()]

    def file_text(self, ref: str, path: str) -> str:
        """Content of ``path`` at ``ref``, or an empty string if it does not exist there."""
        if ref in (EMPTY, EMPTY_TREE):
            return ""
        proc = self._git("show", f"{ref}:{path}", check=False)
        return proc.stdout if proc.returncode == 0 else ""
