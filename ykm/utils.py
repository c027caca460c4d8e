import os
import os.path
import pathlib
import typing

import click
import git


def find_git_directory() -> typing.Optional[pathlib.Path]:
    try:
        repo = git.Repo(search_parent_directories=True)
    except git.exc.InvalidGitRepositoryError:
        return None
    if repo.working_tree_dir is None:
        return None
    return pathlib.Path(repo.working_tree_dir)


def find_project_root() -> pathlib.Path:
    """The enclosing git work tree, or the current directory outside of one."""
    return find_git_directory() or pathlib.Path.cwd()


def expand(value: typing.Union[str, pathlib.Path]) -> pathlib.Path:
    return pathlib.Path(value).expanduser()


def in_directory(
        file: pathlib.Path,
        directory: pathlib.Path) -> bool:
    """Check if a path is a subpath of a directory."""
    try:
        file.relative_to(directory)
    except ValueError:
        return False
    else:
        return True


def rel(path: pathlib.Path, directory: typing.Optional[pathlib.Path] = None) -> str:
    """
    Convert a path to a string relative to a directory (the cwd by default).

    Paths outside of the directory are left absolute. These should only be
    used for presentation.
    """
    directory = directory or pathlib.Path.cwd()
    if not in_directory(path, directory):
        return path.as_posix()
    return os.path.relpath(path.as_posix(), directory.as_posix())


class YkmException(click.ClickException):
    pass
