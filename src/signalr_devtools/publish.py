"""Documentation publishing to a git pages branch.

The publisher mirrors a local directory onto a branch of a remote repository
(``gh-pages`` by default): the branch content is replaced by the directory
content, committed and pushed. All git work happens in a throwaway work tree,
the caller's checkout is never touched.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from .config import Config
from .errors import ExternalProcessError, PublishError
from .runtime import ProcessResult, ProcessRunner, ProcessSpec

__all__ = [
    "GitPagesPublisher",
    "GitUser",
    "PublishCallback",
    "PublishOptions",
    "collect_files",
    "publish_docs",
]

logger = logging.getLogger(__name__)

PublishCallback = Callable[[PublishError | None], None]


@dataclass(frozen=True)
class GitUser:
    """Commit identity used instead of the ambient git config."""

    name: str
    email: str


@dataclass(frozen=True)
class PublishOptions:
    """Where and how to publish.

    Attributes:
        repository_url: Remote to push to (any URL git accepts)
        include_dotfiles: Publish files whose path has a component starting with "."
        branch: Target branch
        message: Commit message
        remote: Remote name inside the temporary work tree
        user: Optional commit identity
    """

    repository_url: str
    include_dotfiles: bool = False
    branch: str = "gh-pages"
    message: str = "Updates"
    remote: str = "origin"
    user: GitUser | None = None


def collect_files(source_dir: Path, include_dotfiles: bool) -> list[Path]:
    """List files under source_dir as sorted relative paths.

    ``.git`` directories are always skipped.
    """
    files: list[Path] = []
    for path in sorted(source_dir.rglob("*")):
        if not path.is_file():
            continue
        relative = path.relative_to(source_dir)
        if ".git" in relative.parts:
            continue
        if not include_dotfiles and any(part.startswith(".") for part in relative.parts):
            continue
        files.append(relative)
    return files


class GitPagesPublisher:
    """Publishes a directory to a branch using the git CLI.

    Example:
        publisher = GitPagesPublisher()
        await publisher.publish(
            "docs",
            PublishOptions("https://github.com/org/repo.git", include_dotfiles=True),
        )
    """

    def __init__(self, runner: ProcessRunner | None = None, git: str = "git") -> None:
        self.runner = runner or ProcessRunner()
        self.git = git

    async def publish(
        self,
        source_directory: str | Path,
        options: PublishOptions,
        callback: PublishCallback | None = None,
    ) -> None:
        """Publish source_directory to options.branch.

        With a callback, the outcome is reported exactly once through it
        (None on success) and nothing is raised. Without one, failures raise.

        Raises:
            PublishError: On any failure when no callback is given
        """
        error: PublishError | None = None
        try:
            await self._publish(Path(source_directory), options)
        except PublishError as e:
            error = e
        except ExternalProcessError as e:
            error = PublishError(f"git failed: {e}")
            error.__cause__ = e
        except OSError as e:
            error = PublishError(f"publish failed: {e}")
            error.__cause__ = e

        if callback is not None:
            callback(error)
        elif error is not None:
            raise error

    async def _publish(self, source_dir: Path, options: PublishOptions) -> None:
        source = source_dir.resolve()
        if not source.is_dir():
            raise PublishError(f"source directory not found: {source}")

        files = collect_files(source, options.include_dotfiles)
        if not files:
            raise PublishError(f"no files to publish in {source}")

        with tempfile.TemporaryDirectory(prefix="srd-publish-") as tmp:
            work = Path(tmp)
            await self._git(work, options, "init", "--quiet")
            await self._git(work, options, "remote", "add", options.remote, options.repository_url)

            fetched = await self._git(
                work, options,
                "fetch", "--quiet", "--depth", "1", options.remote, options.branch,
                check=False,
            )
            if fetched.ok:
                await self._git(work, options, "checkout", "--quiet", "-B", options.branch, "FETCH_HEAD")
                await self._git(work, options, "rm", "-r", "--quiet", "--ignore-unmatch", ".")
            else:
                logger.info(f"Branch {options.branch} not found on remote, creating it")
                await self._git(work, options, "symbolic-ref", "HEAD", f"refs/heads/{options.branch}")

            for relative in files:
                target = work / relative
                target.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(source / relative, target)
            logger.debug(f"Copied {len(files)} file(s) from {source}")

            await self._git(work, options, "add", "--all")
            status = await self._git(work, options, "status", "--porcelain")
            if not status.stdout.strip():
                logger.info(f"Nothing to publish, {options.branch} is up to date")
                return

            await self._git(work, options, "commit", "--quiet", "-m", options.message)
            await self._git(work, options, "push", "--quiet", options.remote, options.branch)

    async def _git(
        self,
        work: Path,
        options: PublishOptions,
        *args: str,
        check: bool = True,
    ) -> ProcessResult:
        argv = [self.git]
        if options.user is not None:
            argv += ["-c", f"user.name={options.user.name}", "-c", f"user.email={options.user.email}"]
        argv += list(args)
        return await self.runner.execute(ProcessSpec(argv=argv, cwd=work), check=check)


async def publish_docs(
    config: Config,
    publisher: GitPagesPublisher | None = None,
) -> int:
    """Publish the docs directory to the configured repository.

    Returns:
        0 on success, 1 on failure
    """
    publisher = publisher or GitPagesPublisher()
    options = PublishOptions(
        repository_url=config.repo_url,
        include_dotfiles=config.publish_dotfiles,
        branch=config.publish_branch,
    )
    outcome: list[PublishError | None] = []

    logger.info(f"Publishing to {config.repo_url}")
    await publisher.publish(config.resolve(config.docs_dir), options, outcome.append)

    error = outcome[0] if outcome else None
    if error is None:
        logger.info("Finished publishing successfully")
        return 0
    logger.error(f"Error occurred while publishing: {error}")
    return 1
