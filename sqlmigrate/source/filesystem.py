"""
File-based migration source.

Each migration is one file in a directory, named after its version:

    migrations/
        1_create_users.sql
        2_add_email_index.sql
        3.sql

File name convention: <version>[_<label>].<extension>, where version is a
positive integer. Hidden files (leading '.') and subdirectories are ignored;
any other file that does not follow the convention is a catalog error.

File content is split into sections by marker lines:

    Anything before the first marker is ignored (headers, notes).

    --UP--
    CREATE TABLE users (id INTEGER PRIMARY KEY);

    --DOWN--
    DROP TABLE users;

    --SNAPSHOT--
    CREATE TABLE users (id INTEGER PRIMARY KEY);

Each section is stripped of surrounding whitespace. The snapshot section is
optional; when present it must build the schema of this version from an
empty database, and is only used when no migration has been applied yet.

Files are read lazily, on the first access to any section, and cached for
the life of the FileMigration instance.
"""

import logging
import re
from pathlib import Path

from sqlmigrate.exceptions import CatalogError, PayloadResolutionError

logger = logging.getLogger(__name__)

UP_MARKER = "--UP--"
DOWN_MARKER = "--DOWN--"
SNAPSHOT_MARKER = "--SNAPSHOT--"

DEFAULT_EXTENSION = "sql"

_FILE_NAME_PATTERN = re.compile(r"^(?P<version>[0-9]+)(?:_(?P<label>[^.]*))?$")


def parse_file_name(file_name: str, extension: str = DEFAULT_EXTENSION) -> int | None:
    """
    Extract the migration version from a file name.

    Args:
        file_name: Base name of the file (no directory)
        extension: Expected extension without the dot

    Returns:
        int: Version, or None if the name does not follow the convention

    Examples:
        >>> parse_file_name("12_add_index.sql")
        12
        >>> parse_file_name("3.sql")
        3
        >>> parse_file_name("add_index.sql") is None
        True
        >>> parse_file_name("1.tar.sql") is None
        True
    """
    parsed = _split_file_name(file_name, extension)
    return parsed[0] if parsed else None


def _split_file_name(file_name: str, extension: str) -> tuple[int, str] | None:
    stem, dot, ext = file_name.rpartition(".")
    if not dot or ext != extension or "." in stem:
        return None

    match = _FILE_NAME_PATTERN.match(stem)
    if match is None:
        return None

    version = int(match.group("version"))
    if version < 1:
        return None
    return version, match.group("label") or stem


def parse_file_content(content: str) -> tuple[str, str, str]:
    """
    Split migration file content into (up, down, snapshot) sections.

    A marker must be alone on its line; surrounding whitespace on that line is
    tolerated. Text before the first marker is ignored. Missing sections are
    returned as empty strings.

    Example:
        >>> parse_file_content("--UP--\\nCREATE TABLE t (id INT);\\n--DOWN--\\nDROP TABLE t;")
        ('CREATE TABLE t (id INT);', 'DROP TABLE t;', '')
    """
    sections: dict[str, list[str]] = {
        UP_MARKER: [],
        DOWN_MARKER: [],
        SNAPSHOT_MARKER: [],
    }
    current: list[str] | None = None

    for line in content.splitlines():
        marker = line.strip()
        if marker in sections:
            current = sections[marker]
        elif current is not None:
            current.append(line)

    return (
        "\n".join(sections[UP_MARKER]).strip(),
        "\n".join(sections[DOWN_MARKER]).strip(),
        "\n".join(sections[SNAPSHOT_MARKER]).strip(),
    )


class FileMigration:
    """
    A migration backed by a single file, read on first access.

    Attributes:
        version: Migration version parsed from the file name
        name: Label part of the file name
        path: Path to the migration file
    """

    def __init__(self, path: Path, version: int, name: str):
        self.path = path
        self.version = version
        self.name = name

        self._loaded = False
        self._up = ""
        self._down = ""
        self._snapshot = ""

    def __repr__(self) -> str:
        return f"FileMigration(version={self.version}, path={str(self.path)!r})"

    def forward(self) -> str:
        self._load()
        return self._up

    def backward(self) -> str:
        self._load()
        return self._down

    def snapshot(self) -> str:
        self._load()
        return self._snapshot

    def _load(self) -> None:
        if self._loaded:
            return

        try:
            content = self.path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise PayloadResolutionError(
                f"Failed to read migration {self.version} from {self.path}: {e}",
                operation="load",
                version=self.version,
            ) from e

        self._up, self._down, self._snapshot = parse_file_content(content)
        self._loaded = True
        logger.debug(f"Loaded migration file {self.path}", extra={"version": self.version})


class FilesystemSource:
    """
    Lists migrations from a directory of versioned files.

    Example:
        >>> source = FilesystemSource("migrations")
        >>> [m.version for m in source.list_migrations()]
        [1, 2, 3]
    """

    def __init__(self, directory: str | Path, extension: str = DEFAULT_EXTENSION):
        self.directory = Path(directory)
        self.extension = extension.lstrip(".")

    def list_migrations(self) -> list[FileMigration]:
        """
        Return the migrations of the directory, lowest version first.

        Raises:
            CatalogError: If the directory cannot be read, a file name does not
                follow the convention, or two files share a version
        """
        try:
            entries = sorted(self.directory.iterdir())
        except OSError as e:
            raise CatalogError(
                f"Failed to read migrations directory {self.directory}: {e}",
                operation="list",
            ) from e

        migrations: dict[int, FileMigration] = {}
        for entry in entries:
            if entry.name.startswith(".") or entry.is_dir():
                continue

            parsed = _split_file_name(entry.name, self.extension)
            if parsed is None:
                raise CatalogError(
                    f"Invalid migration file name: {entry.name!r} "
                    f"(expected <version>[_<label>].{self.extension})",
                    operation="list",
                )

            version, name = parsed
            if version in migrations:
                raise CatalogError(
                    f"Duplicate migration version {version}: "
                    f"{migrations[version].path.name!r} and {entry.name!r}",
                    operation="list",
                    version=version,
                )
            migrations[version] = FileMigration(entry, version, name)

        logger.debug(
            f"Found {len(migrations)} migration(s) in {self.directory}",
            extra={"context": {"directory": str(self.directory)}},
        )
        return [migrations[version] for version in sorted(migrations)]

    def next_version(self) -> int:
        """Return the version following the highest existing one."""
        if not self.directory.exists():
            return 1
        return max((m.version for m in self.list_migrations()), default=0) + 1

    def create(self, label: str) -> Path:
        """
        Create an empty migration file for the next version.

        Args:
            label: Descriptive label; non-alphanumeric runs become '_'

        Returns:
            Path: The created file

        Raises:
            CatalogError: If the existing catalog is invalid or the file
                cannot be written
        """
        slug = re.sub(r"[^a-zA-Z0-9]+", "_", label).strip("_").lower()
        version = self.next_version()
        file_name = f"{version}_{slug}.{self.extension}" if slug else f"{version}.{self.extension}"
        path = self.directory / file_name

        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            with path.open("x", encoding="utf-8") as f:
                f.write(render_template(label))
        except OSError as e:
            raise CatalogError(
                f"Failed to create migration file {path}: {e}",
                operation="create",
                version=version,
            ) from e

        logger.info(f"Created migration file {path}", extra={"version": version})
        return path


def render_template(label: str) -> str:
    """Content of a freshly created migration file."""
    return (
        f"-- {label}\n"
        "\n"
        f"{UP_MARKER}\n"
        "\n"
        f"{DOWN_MARKER}\n"
        "\n"
        f"{SNAPSHOT_MARKER}\n"
    )
