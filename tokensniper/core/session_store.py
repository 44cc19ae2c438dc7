"""
JSON session cache: scanner config, cumulative stats and open positions
"""

import json
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from tokensniper.core.config import ScannerConfig
from tokensniper.core.errors import ValidationError
from tokensniper.core.logger import get_logger
from tokensniper.core.models import BotStats, Position


logger = get_logger(__name__)


CACHE_VERSION = 1


@dataclass
class SessionSnapshot:
    """What survives between runs"""
    scanner_config: Optional[ScannerConfig] = None
    stats: Optional[BotStats] = None
    positions: List[Position] = field(default_factory=list)
    saved_at: float = 0.0


class SessionStore:
    """
    Best-effort cache file

    Loading never raises: a missing, unreadable or corrupt file yields an
    empty snapshot. Saving writes to a temp file and renames it into place.
    """

    def __init__(self, path: str):
        self.path = Path(path)

    def load(self) -> SessionSnapshot:
        if not self.path.exists():
            return SessionSnapshot()

        try:
            with open(self.path, 'r') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("session_cache_unreadable", path=str(self.path), error=str(e))
            return SessionSnapshot()

        if not isinstance(data, dict) or data.get("version") != CACHE_VERSION:
            logger.warning("session_cache_ignored", path=str(self.path), reason="unknown_format")
            return SessionSnapshot()

        snapshot = SessionSnapshot(saved_at=float(data.get("saved_at", 0.0)))

        try:
            if data.get("scanner_config") is not None:
                config = ScannerConfig.from_dict(data["scanner_config"])
                config.validate()
                snapshot.scanner_config = config
        except (ValidationError, TypeError, ValueError, KeyError) as e:
            logger.warning("session_cache_config_invalid", error=str(e))

        try:
            if data.get("stats") is not None:
                snapshot.stats = BotStats.from_dict(data["stats"])
        except (TypeError, ValueError) as e:
            logger.warning("session_cache_stats_invalid", error=str(e))

        for item in data.get("positions") or []:
            try:
                snapshot.positions.append(Position.from_dict(item))
            except (TypeError, ValueError, KeyError) as e:
                logger.warning("session_cache_position_invalid", error=str(e))

        logger.info(
            "session_cache_loaded",
            path=str(self.path),
            has_config=snapshot.scanner_config is not None,
            positions=len(snapshot.positions)
        )
        return snapshot

    def save(
        self,
        scanner_config: ScannerConfig,
        stats: BotStats,
        positions: Optional[List[Position]] = None
    ) -> bool:
        """
        Write the cache

        Returns:
            True if written, False if the write failed (logged)
        """
        data = {
            "version": CACHE_VERSION,
            "saved_at": time.time(),
            "scanner_config": scanner_config.to_dict(),
            "stats": stats.to_dict(),
            "positions": [p.to_dict() for p in positions or []],
        }

        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, 'w') as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, self.path)
        except OSError as e:
            logger.error("session_cache_save_failed", path=str(self.path), error=str(e))
            return False

        logger.debug("session_cache_saved", path=str(self.path))
        return True

    def clear(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
