"""Application configuration defaults."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from entityfinder.resolution.job import JobOptions


def _get_default_db_path() -> Path:
    """Get the default database path, preferring a local data/ directory."""
    user_db = Path.home() / "Documents" / "EntityFinder" / "entityfinder.db"

    # When running from source, prefer local data/ if it exists
    local_db = Path("data/entityfinder.db")
    if local_db.exists():
        return local_db

    return user_db


@dataclass(slots=True)
class AppConfig:
    db_path: Path | None = None
    model_path: Path | None = None
    max_hops: int = 100
    max_docs_per_query: int = 1000
    concurrency: int = 10

    def __post_init__(self) -> None:
        if self.db_path is None:
            self.db_path = _get_default_db_path()

    def resolve_db_path(self, base_dir: Path | None = None) -> Path:
        if self.db_path is None:
            self.db_path = _get_default_db_path()
        if Path(self.db_path).is_absolute() or base_dir is None:
            return Path(self.db_path)
        return base_dir / self.db_path

    def job_options(self, **overrides: object) -> JobOptions:
        """Job options seeded from this configuration."""
        options = JobOptions(max_hops=self.max_hops, max_docs_per_query=self.max_docs_per_query)
        for name, value in overrides.items():
            setattr(options, name, value)
        return options
