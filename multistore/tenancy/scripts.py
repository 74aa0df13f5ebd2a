"""Versioned tenant-schema migration scripts.

Scripts live in ``multistore/tenancy/migrations`` and are named
``V<version>__<description>.sql``. They are applied to exactly one tenant
schema per run, in ascending version order, and must only use unqualified
table names (the target schema is selected by ``search_path``).

Statements are separated by ``;``. Scripts must not contain semicolons
inside string literals or function bodies.
"""

import hashlib
import re
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from multistore.core.errors import MigrationOrderError

MIGRATIONS_DIR = Path(__file__).parent / "migrations"

_FILENAME_RE = re.compile(r"^V(?P<version>\d+)__(?P<description>\w+)\.sql$")


@dataclass(frozen=True, slots=True)
class MigrationScript:
    version: int
    description: str
    sql: str

    @property
    def checksum(self) -> str:
        return hashlib.sha256(self.sql.encode("utf-8")).hexdigest()

    @property
    def statements(self) -> list[str]:
        return split_statements(self.sql)

    @classmethod
    def from_filename(cls, filename: str, sql: str) -> "MigrationScript":
        match = _FILENAME_RE.match(filename)
        if match is None:
            raise ValueError(f"Not a migration script name: {filename}")
        return cls(
            version=int(match["version"]),
            description=match["description"].replace("_", " "),
            sql=sql,
        )


def split_statements(sql: str) -> list[str]:
    """Strip ``--`` comment lines and split on ``;``."""
    lines = [
        line for line in sql.splitlines()
        if not line.lstrip().startswith("--")
    ]
    statements = []
    for chunk in "\n".join(lines).split(";"):
        statement = chunk.strip()
        if statement:
            statements.append(statement)
    return statements


def ordered(scripts: Iterable[MigrationScript]) -> list[MigrationScript]:
    """Sort by version, rejecting duplicate versions."""
    result = sorted(scripts, key=lambda s: s.version)
    for previous, current in zip(result, result[1:]):
        if previous.version == current.version:
            raise MigrationOrderError(
                f"Duplicate migration version {current.version}: "
                f"'{previous.description}' and '{current.description}'"
            )
    return result


def load_migrations(directory: Path = MIGRATIONS_DIR) -> list[MigrationScript]:
    """Load every ``V<n>__*.sql`` script from ``directory`` (the packaged one by default)."""
    scripts = []
    for entry in Path(directory).iterdir():
        if not _FILENAME_RE.match(entry.name):
            continue
        scripts.append(
            MigrationScript.from_filename(entry.name, entry.read_text(encoding="utf-8"))
        )
    return ordered(scripts)
