"""GitCliBackend — delegate diff, merge and branch listing to ``git``.

The object store stays the source of truth.  Each repository gets a
bare mirror repository that commits and trees are exported into on
demand; git then compares and merges the exported objects, and merge
results are read back into the object store as a regular merge commit.
Every invocation names the mirror with ``--git-dir``, so git never
discovers an enclosing repository.

All git operations use :func:`subprocess.run` with a timeout; no
GitPython dependency.  A missing binary or an expired timeout surfaces
as :class:`ExternalFailureError`.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import subprocess
from pathlib import Path
from typing import Callable, Mapping, Union

from gitcore.backends.base import MergeResult
from gitcore.backends.native import NativeBackend, write_merge_commit
from gitcore.config import COMMIT_TZ_OFFSET, DEFAULT_DIFF_TIMEOUT, MIN_GIT_VERSION
from gitcore.diff.models import DiffResult
from gitcore.diff.stat import parse_diff_stat
from gitcore.errors import (
    ExternalFailureError,
    GitCommandError,
    InvalidInputError,
    InvalidStateError,
    MergeConflictError,
)
from gitcore.objects.commit import Author
from gitcore.objects.hasher import Digest, Hasher
from gitcore.objects.store import ObjectStore
from gitcore.objects.tree import EntryKind, ObjectKind
from gitcore.refs.branches import BranchDirectory

logger = logging.getLogger(__name__)

# Digest of the empty tree; git accepts it as a ref without it existing in the repo
EMPTY_TREE = "4b825dc642cb6eb9a060e54bf8d69288fbee4904"

# Mirror refs recording which git commit each exported commit became
MIRROR_REF_PREFIX = "refs/gitcore/commits/"

_VERSION_RE = re.compile(r"(\d+)\.(\d+)")


def _decode(output: Union[str, bytes, None]) -> str:
    if isinstance(output, bytes):
        return output.decode("utf-8", errors="replace")
    return output or ""


def _run_git(
    *args: str,
    git_dir: str | Path | None = None,
    git_binary: str = "git",
    timeout: float = DEFAULT_DIFF_TIMEOUT,
    check: bool = True,
    input: Union[str, bytes, None] = None,
    env: Mapping[str, str] | None = None,
    text: bool = True,
) -> subprocess.CompletedProcess:
    """Execute a git command via subprocess and return the result.

    Parameters
    ----------
    *args:
        Arguments passed after the binary (and ``--git-dir``).
    git_dir:
        Repository to operate on; also the working directory.
    git_binary:
        Executable to run.
    timeout:
        Seconds before the process is abandoned.
    check:
        If *True*, raise :class:`GitCommandError` on non-zero exit.
    input:
        Data written to the command's stdin.
    env:
        Variables added to the inherited environment.
    text:
        If *False*, stdin and stdout are bytes.
    """
    cmd = [git_binary]
    if git_dir is not None:
        cmd.append(f"--git-dir={git_dir}")
    cmd.extend(args)
    logger.debug("git %s (git_dir=%s)", " ".join(args), git_dir)
    try:
        result = subprocess.run(
            cmd,
            cwd=git_dir,
            input=input,
            capture_output=True,
            text=text,
            timeout=timeout,
            env={**os.environ, **env} if env else None,
        )
    except FileNotFoundError as exc:
        raise ExternalFailureError(f"{git_binary} is not available: {exc}") from exc
    except subprocess.TimeoutExpired as exc:
        raise ExternalFailureError(f"git {' '.join(args)} timed out after {timeout}s") from exc
    except OSError as exc:
        raise ExternalFailureError(f"git {' '.join(args)} could not run: {exc}") from exc

    if check and result.returncode != 0:
        raise GitCommandError(
            f"git {' '.join(args)} failed (rc={result.returncode}): {_decode(result.stderr).strip()}",
            command=cmd,
            returncode=result.returncode,
        )
    return result


def parse_git_version(text: str) -> tuple[int, int]:
    """Return ``(major, minor)`` from ``git version`` output, or ``(0, 0)``."""
    match = _VERSION_RE.search(text)
    if match is None:
        return (0, 0)
    return (int(match.group(1)), int(match.group(2)))


class GitCliBackend(NativeBackend):
    """Backend wrapping an external ``git`` binary.

    Refs are resolved against the branch directory before git sees
    them, so only object ids reach git's command line.

    Parameters
    ----------
    store:
        Object store holding the authoritative objects.
    branches:
        Branch directory holding the authoritative heads.
    repository_path:
        Maps a repository id to its bare mirror repository on disk.
    git_binary:
        Name or path of the git executable.
    timeout:
        Seconds any single git invocation may take.
    """

    name = "git"

    def __init__(
        self,
        store: ObjectStore,
        branches: BranchDirectory,
        repository_path: Callable[[str], Path],
        git_binary: str = "git",
        timeout: float = DEFAULT_DIFF_TIMEOUT,
    ) -> None:
        super().__init__(store, branches)
        self._repository_path = repository_path
        self.git_binary = git_binary
        self.timeout = timeout
        # (repository_id, native digest) -> git object id, and back for blobs
        self._exported: dict[tuple[str, Digest], str] = {}
        self._imported: dict[tuple[str, str], Digest] = {}

    # -- Mirror repository ---------------------------------------------------

    def git_dir(self, repository_id: str) -> Path:
        """Return the mirror of *repository_id*, creating it on first use."""
        if not repository_id or "/" in repository_id or "\\" in repository_id or repository_id in (".", ".."):
            raise InvalidInputError(f"Invalid repository id: {repository_id!r}")
        path = Path(self._repository_path(repository_id)).resolve()
        if not (path / "HEAD").is_file():
            path.mkdir(parents=True, exist_ok=True)
            _run_git(
                "init", "--bare", "--quiet", "--", str(path),
                git_binary=self.git_binary,
                timeout=self.timeout,
            )
            logger.info("Initialized git mirror for %s at %s", repository_id, path)
        return path

    def _git(
        self,
        repository_id: str,
        *args: str,
        check: bool = True,
        input: Union[str, bytes, None] = None,
        env: Mapping[str, str] | None = None,
        text: bool = True,
    ) -> subprocess.CompletedProcess:
        return _run_git(
            *args,
            git_dir=self.git_dir(repository_id),
            git_binary=self.git_binary,
            timeout=self.timeout,
            check=check,
            input=input,
            env=env,
            text=text,
        )

    def is_available(self) -> bool:
        if shutil.which(self.git_binary) is None:
            return False
        try:
            output = _run_git("version", git_binary=self.git_binary, timeout=self.timeout).stdout
        except ExternalFailureError:
            return False
        return parse_git_version(_decode(output)) >= MIN_GIT_VERSION

    # -- Export --------------------------------------------------------------

    def _blob_id(self, repository_id: str, digest: Digest) -> str:
        key = (repository_id, digest)
        if key not in self._exported:
            data = self.store.load_blob(repository_id, digest)
            result = self._git(repository_id, "hash-object", "-w", "--stdin", input=data, text=False)
            oid = _decode(result.stdout).strip()
            self._exported[key] = oid
            self._imported[(repository_id, oid)] = digest
        return self._exported[key]

    def _tree_id(self, repository_id: str, digest: Digest) -> str:
        key = (repository_id, digest)
        if key not in self._exported:
            tree = self.store.load_tree(repository_id, digest)
            records = []
            for entry in tree.entries:
                if entry.kind is EntryKind.DIR:
                    records.append(f"040000 tree {self._tree_id(repository_id, entry.digest)}\t{entry.name}\0")
                else:
                    records.append(f"100644 blob {self._blob_id(repository_id, entry.digest)}\t{entry.name}\0")
            result = self._git(repository_id, "mktree", "-z", input="".join(records))
            self._exported[key] = result.stdout.strip()
        return self._exported[key]

    def _exported_commit(self, repository_id: str, digest: Digest) -> str | None:
        key = (repository_id, digest)
        if key not in self._exported:
            result = self._git(
                repository_id, "rev-parse", "--verify", "--quiet", f"{MIRROR_REF_PREFIX}{digest}^{{commit}}",
                check=False,
            )
            if result.returncode != 0:
                return None
            self._exported[key] = result.stdout.strip()
        return self._exported[key]

    def export_commit(self, repository_id: str, digest: Digest) -> str:
        """Write a commit and its ancestry into the mirror; return its git id."""
        pending = [digest]
        while pending:
            current = pending[-1]
            if self._exported_commit(repository_id, current) is not None:
                pending.pop()
                continue
            commit = self.store.load_commit(repository_id, current)
            missing = [p for p in commit.parents if self._exported_commit(repository_id, p) is None]
            if missing:
                pending.extend(missing)
                continue
            pending.pop()

            args = ["commit-tree", self._tree_id(repository_id, commit.tree_digest)]
            for parent in commit.parents:
                args += ["-p", self._exported[(repository_id, parent)]]
            oid = self._git(
                repository_id, *args,
                input=commit.message,
                env=_identity_env(commit.author, commit.timestamp),
            ).stdout.strip()
            self._git(repository_id, "update-ref", f"{MIRROR_REF_PREFIX}{current}", oid)
            self._exported[(repository_id, current)] = oid
            logger.debug("Exported %s to git %s in %s", current, oid, repository_id)
        return self._exported[(repository_id, digest)]

    # -- Import --------------------------------------------------------------

    def _native_blob(self, repository_id: str, oid: str) -> Digest:
        key = (repository_id, oid)
        if key not in self._imported:
            data = self._git(repository_id, "cat-file", "blob", oid, text=False).stdout
            digest = Hasher.hash_bytes(data)
            self.store.put(repository_id, ObjectKind.BLOB, digest, data)
            self._imported[key] = digest
        return self._imported[key]

    def import_tree(self, repository_id: str, tree_oid: str) -> dict[str, Digest]:
        """Return ``path -> blob digest`` for a git tree, storing unknown blobs."""
        listing = self._git(repository_id, "ls-tree", "-r", "-z", "--end-of-options", tree_oid).stdout
        files: dict[str, Digest] = {}
        for record in listing.split("\0"):
            if not record:
                continue
            meta, _, path = record.partition("\t")
            _mode, kind, oid = meta.split()
            if kind != "blob":
                raise InvalidStateError(f"Unsupported {kind} entry '{path}' in git tree {tree_oid}")
            files[path] = self._native_blob(repository_id, oid)
        return files

    # -- Capabilities --------------------------------------------------------

    def _tree_for_ref(self, repository_id: str, ref: str | None) -> str:
        commit_digest = self.resolve_ref(repository_id, ref)
        if commit_digest is None:
            return EMPTY_TREE
        return self._tree_id(repository_id, self.store.load_commit(repository_id, commit_digest).tree_digest)

    def diff(self, repository_id: str, from_ref: str | None, to_ref: str | None) -> DiffResult:
        old_tree = self._tree_for_ref(repository_id, from_ref)
        new_tree = self._tree_for_ref(repository_id, to_ref)
        result = self._git(repository_id, "diff", "--stat", "--end-of-options", old_tree, new_tree)
        return parse_diff_stat(result.stdout)

    def merge(
        self,
        repository_id: str,
        source: str,
        target: str,
        *,
        author: Author,
        message: str | None = None,
        timestamp: int | None = None,
    ) -> MergeResult:
        source_head = self.branches.get_branch(repository_id, source).head_commit_digest
        target_head = self.branches.get_branch(repository_id, target).head_commit_digest
        if source_head is None:
            raise InvalidStateError(f"Nothing to merge: '{source}' has no commits")

        if target_head is None:
            merged: dict[str, Digest] = self._files_of(repository_id, source_head)
            ours: dict[str, Digest] = {}
        else:
            source_oid = self.export_commit(repository_id, source_head)
            target_oid = self.export_commit(repository_id, target_head)
            contained = self._git(
                repository_id, "merge-base", "--is-ancestor", "--end-of-options", source_oid, target_oid,
                check=False,
            )
            if contained.returncode == 0:
                raise InvalidStateError(f"Nothing to merge: '{source}' is already in '{target}'")

            result = self._git(
                repository_id,
                "merge-tree", "--write-tree", "-z", "--name-only", "--no-messages",
                "--end-of-options", target_oid, source_oid,
                check=False,
            )
            fields = result.stdout.split("\0")
            if result.returncode == 1:
                paths: list[str] = []
                for path in fields[1:]:
                    if not path:
                        break
                    if path not in paths:
                        paths.append(path)
                raise MergeConflictError(
                    f"Merge conflict merging {source} into {target}: {', '.join(paths)}",
                    paths=paths,
                )
            if result.returncode != 0:
                raise GitCommandError(
                    f"git merge-tree failed (rc={result.returncode}): {result.stderr.strip()}",
                    returncode=result.returncode,
                )
            merged = self.import_tree(repository_id, fields[0].strip())
            ours = self._files_of(repository_id, target_head)

        return write_merge_commit(
            self.store,
            repository_id,
            merged,
            ours,
            source=source,
            target=target,
            source_head=source_head,
            target_head=target_head,
            author=author,
            message=message,
            timestamp=timestamp,
        )

    def list_branches(self, repository_id: str) -> list[str]:
        """Publish branch heads to the mirror and list its branches."""
        published: set[str] = set()
        for branch in self.branches.list_branches(repository_id):
            if branch.head_commit_digest is None:
                continue
            oid = self.export_commit(repository_id, branch.head_commit_digest)
            self._git(repository_id, "update-ref", f"refs/heads/{branch.name}", oid)
            published.add(branch.name)

        result = self._git(repository_id, "for-each-ref", "--format=%(refname)", "refs/heads/")
        names = []
        for line in result.stdout.splitlines():
            name = line.strip()[len("refs/heads/"):]
            if not name:
                continue
            if name in published:
                names.append(name)
            else:
                self._git(repository_id, "update-ref", "-d", f"refs/heads/{name}")
        return names

    def checkout(self, repository_id: str, ref: str) -> Digest | None:
        digest = self.resolve_ref(repository_id, ref)
        if digest is not None:
            self.export_commit(repository_id, digest)
        return digest


def _identity_env(author: Author, timestamp: int) -> dict[str, str]:
    stamp = f"{timestamp} {COMMIT_TZ_OFFSET}"
    name = author.name or author.email
    return {
        "GIT_AUTHOR_NAME": name,
        "GIT_AUTHOR_EMAIL": author.email,
        "GIT_AUTHOR_DATE": stamp,
        "GIT_COMMITTER_NAME": name,
        "GIT_COMMITTER_EMAIL": author.email,
        "GIT_COMMITTER_DATE": stamp,
    }
