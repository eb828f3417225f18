"""
Migration discovery.

Scans a directory for ``<version>__<description>.<ext>`` scripts and
turns them into an ascending, duplicate-free batch. Discovery is
all-or-nothing: one malformed filename fails the whole call.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Union

from polystore.core.exceptions import DiscoveryError, DiscoveryErrorKind

logger = logging.getLogger(__name__)

DEFAULT_EXTENSIONS = (".sql",)

_FILENAME = re.compile(r"^(\d+)__(.*)$")


@dataclass(frozen=True)
class Migration:
    """
    One versioned schema script.

    Attributes:
        version: Non-negative integer, unique within a batch
        description: Free text from the filename, for diagnostics only
        script: Script body handed to the backend unchanged
        path: Source file, when discovered from disk
    """

    version: int
    description: str
    script: str = field(repr=False)
    path: Optional[Path] = None

    @property
    def name(self) -> str:
        return f"{self.version}__{self.description}"


def parse_filename(filename: str) -> tuple:
    """
    Split a migration filename into ``(version, description)``.

    Raises:
        DiscoveryError: INVALID_FILENAME without the ``__`` separator or
            with a non-integer version prefix
    """
    stem = Path(filename).stem
    match = _FILENAME.match(stem)
    if match is None:
        raise DiscoveryError(
            DiscoveryErrorKind.INVALID_FILENAME,
            f"Invalid migration filename '{filename}': "
            "expected <version>__<description>.<ext>",
            details={"filename": filename},
        )
    return int(match.group(1)), match.group(2)


def discover(
    directory: Union[str, Path],
    extensions: Iterable[str] = DEFAULT_EXTENSIONS,
) -> List[Migration]:
    """
    Read every migration script in ``directory``.

    Hidden files, subdirectories and files with other extensions are
    ignored. The result is ordered by version.

    Raises:
        DiscoveryError: UNREADABLE_DIRECTORY, INVALID_FILENAME or
            DUPLICATE_VERSION
    """
    directory = Path(directory)
    suffixes = {ext.lower() for ext in extensions}
    migrations: List[Migration] = []

    try:
        entries = sorted(directory.iterdir())
        for entry in entries:
            if entry.name.startswith(".") or not entry.is_file():
                continue
            if entry.suffix.lower() not in suffixes:
                continue
            version, description = parse_filename(entry.name)
            try:
                script = entry.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                raise DiscoveryError(
                    DiscoveryErrorKind.UNREADABLE_DIRECTORY,
                    f"Cannot read migration {entry.name}: {e}",
                    details={"directory": str(directory), "filename": entry.name},
                ) from e
            migrations.append(
                Migration(
                    version=version,
                    description=description,
                    script=script,
                    path=entry,
                )
            )
    except OSError as e:
        raise DiscoveryError(
            DiscoveryErrorKind.UNREADABLE_DIRECTORY,
            f"Cannot read migrations from {directory}: {e}",
            details={"directory": str(directory)},
        ) from e

    ordered = order(migrations)
    logger.debug(f"Discovered {len(ordered)} migration(s) in {directory}")
    return ordered


def order(migrations: Sequence[Migration]) -> List[Migration]:
    """
    Sort strictly ascending by version.

    Raises:
        DiscoveryError: DUPLICATE_VERSION when two migrations share a version
    """
    seen: Dict[int, Migration] = {}
    for migration in migrations:
        other = seen.get(migration.version)
        if other is not None:
            raise DiscoveryError(
                DiscoveryErrorKind.DUPLICATE_VERSION,
                f"Duplicate migration version {migration.version}: "
                f"'{other.name}' and '{migration.name}'",
                details={"version": migration.version},
            )
        seen[migration.version] = migration
    return [seen[version] for version in sorted(seen)]
