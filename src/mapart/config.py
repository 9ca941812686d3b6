"""Runtime configuration for the ledger, workers and pool."""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path

from mapart.site import SiteLayout


@dataclass(slots=True)
class WorkerSettings:
    """Per-worker scheduling settings."""

    tick_seconds: float = 1.0
    restock_cooldown_seconds: float = 300.0
    restock_cooldown_max_seconds: float = 300.0
    stale_band_seconds: int = 900
    startup_stagger_seconds: float = 10.0
    pause_poll_seconds: float = 1.0
    error_backoff_seconds: float = 1.0
    error_backoff_max_seconds: float = 30.0
    max_consecutive_errors: int = 10
    release_attempts: int = 3
    world_backend: str = "simulated"


@dataclass(slots=True)
class PlacementSettings:
    """Batch placement engine settings."""

    batch_rows: int = 4
    reach: float = 4.5
    max_attempts: int = 3
    retry_backoff_seconds: float = 1.0
    navigation_timeout_seconds: float = 30.0


@dataclass(slots=True)
class PoolSettings:
    """Worker pool settings."""

    worker_names: tuple[str, ...] = ("builder-1",)
    shutdown_grace_seconds: float = 5.0


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path("mapart.sqlite")
    sqlite_busy_timeout_ms: int = 5_000
    assets_dir: Path = Path("assets")
    worker: WorkerSettings = field(default_factory=WorkerSettings)
    placement: PlacementSettings = field(default_factory=PlacementSettings)
    pool: PoolSettings = field(default_factory=PoolSettings)
    layout: SiteLayout = field(default_factory=SiteLayout)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        layout_path = os.getenv("MAPART_LAYOUT_PATH", "").strip()
        return cls(
            db_path=db_path or Path(os.getenv("MAPART_DB_PATH", "mapart.sqlite")),
            sqlite_busy_timeout_ms=int(os.getenv("MAPART_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            assets_dir=Path(os.getenv("MAPART_ASSETS_DIR", "assets")),
            worker=WorkerSettings(
                tick_seconds=float(os.getenv("MAPART_TICK_SECONDS", "1.0")),
                restock_cooldown_seconds=float(
                    os.getenv("MAPART_RESTOCK_COOLDOWN_SECONDS", "300"),
                ),
                restock_cooldown_max_seconds=float(
                    os.getenv(
                        "MAPART_RESTOCK_COOLDOWN_MAX_SECONDS",
                        os.getenv("MAPART_RESTOCK_COOLDOWN_SECONDS", "300"),
                    ),
                ),
                stale_band_seconds=int(os.getenv("MAPART_STALE_BAND_SECONDS", "900")),
                startup_stagger_seconds=float(
                    os.getenv("MAPART_STARTUP_STAGGER_SECONDS", "10"),
                ),
                pause_poll_seconds=float(os.getenv("MAPART_PAUSE_POLL_SECONDS", "1.0")),
                error_backoff_seconds=float(os.getenv("MAPART_ERROR_BACKOFF_SECONDS", "1.0")),
                error_backoff_max_seconds=float(
                    os.getenv("MAPART_ERROR_BACKOFF_MAX_SECONDS", "30"),
                ),
                max_consecutive_errors=int(os.getenv("MAPART_MAX_CONSECUTIVE_ERRORS", "10")),
                release_attempts=int(os.getenv("MAPART_RELEASE_ATTEMPTS", "3")),
                world_backend=os.getenv("MAPART_WORLD_BACKEND", "simulated").strip().lower(),
            ),
            placement=PlacementSettings(
                batch_rows=int(os.getenv("MAPART_BATCH_ROWS", "4")),
                reach=float(os.getenv("MAPART_REACH", "4.5")),
                max_attempts=int(os.getenv("MAPART_PLACE_MAX_ATTEMPTS", "3")),
                retry_backoff_seconds=float(
                    os.getenv("MAPART_PLACE_RETRY_BACKOFF_SECONDS", "1.0"),
                ),
                navigation_timeout_seconds=float(
                    os.getenv("MAPART_NAVIGATION_TIMEOUT_SECONDS", "30"),
                ),
            ),
            pool=PoolSettings(
                worker_names=_collect_worker_names(),
                shutdown_grace_seconds=float(
                    os.getenv("MAPART_SHUTDOWN_GRACE_SECONDS", "5"),
                ),
            ),
            layout=SiteLayout.from_json(Path(layout_path)) if layout_path else SiteLayout(),
        )

    def validate(self) -> None:
        """Raise configuration error for values the workers cannot run with."""

        if self.sqlite_busy_timeout_ms <= 0:
            raise ValueError("MAPART_SQLITE_BUSY_TIMEOUT_MS must be > 0.")
        if self.worker.tick_seconds <= 0:
            raise ValueError("MAPART_TICK_SECONDS must be > 0.")
        if self.worker.restock_cooldown_seconds < 0:
            raise ValueError("MAPART_RESTOCK_COOLDOWN_SECONDS must be >= 0.")
        if self.worker.restock_cooldown_max_seconds < self.worker.restock_cooldown_seconds:
            raise ValueError(
                "MAPART_RESTOCK_COOLDOWN_MAX_SECONDS must be >= MAPART_RESTOCK_COOLDOWN_SECONDS.",
            )
        if self.worker.stale_band_seconds < 0:
            raise ValueError("MAPART_STALE_BAND_SECONDS must be >= 0.")
        if self.worker.error_backoff_seconds < 0:
            raise ValueError("MAPART_ERROR_BACKOFF_SECONDS must be >= 0.")
        if self.worker.max_consecutive_errors <= 0:
            raise ValueError("MAPART_MAX_CONSECUTIVE_ERRORS must be > 0.")
        if self.worker.release_attempts <= 0:
            raise ValueError("MAPART_RELEASE_ATTEMPTS must be > 0.")
        if self.placement.batch_rows <= 0:
            raise ValueError("MAPART_BATCH_ROWS must be > 0.")
        if self.placement.reach <= 0:
            raise ValueError("MAPART_REACH must be > 0.")
        if self.placement.max_attempts <= 0:
            raise ValueError("MAPART_PLACE_MAX_ATTEMPTS must be > 0.")
        if not self.pool.worker_names:
            raise ValueError("At least one worker name is required. Set MAPART_WORKER_NAMES.")
        if len(set(self.pool.worker_names)) != len(self.pool.worker_names):
            raise ValueError("MAPART_WORKER_NAMES must not contain duplicates.")
        self.layout.validate()

    def to_json(self) -> str:
        """Serialize for handing to a spawned worker process."""

        payload = {
            "db_path": str(self.db_path),
            "sqlite_busy_timeout_ms": self.sqlite_busy_timeout_ms,
            "assets_dir": str(self.assets_dir),
            "worker": asdict(self.worker),
            "placement": asdict(self.placement),
            "pool": {
                "worker_names": list(self.pool.worker_names),
                "shutdown_grace_seconds": self.pool.shutdown_grace_seconds,
            },
            "layout": self.layout.to_dict(),
        }
        return json.dumps(payload, sort_keys=True)

    @classmethod
    def from_json(cls, raw: str) -> Settings:
        payload = json.loads(raw)
        pool = payload["pool"]
        return cls(
            db_path=Path(payload["db_path"]),
            sqlite_busy_timeout_ms=int(payload["sqlite_busy_timeout_ms"]),
            assets_dir=Path(payload["assets_dir"]),
            worker=WorkerSettings(**payload["worker"]),
            placement=PlacementSettings(**payload["placement"]),
            pool=PoolSettings(
                worker_names=tuple(pool["worker_names"]),
                shutdown_grace_seconds=float(pool["shutdown_grace_seconds"]),
            ),
            layout=SiteLayout.from_dict(payload["layout"]),
        )


def _collect_worker_names() -> tuple[str, ...]:
    raw = os.getenv("MAPART_WORKER_NAMES", "").strip()
    if not raw:
        return ("builder-1",)
    return tuple(part.strip() for part in raw.split(",") if part.strip())
