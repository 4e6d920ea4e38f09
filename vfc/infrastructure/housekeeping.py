import logging
import shutil
import time
from pathlib import Path
from typing import Optional

SCRATCH_PREFIX = "vfc_"

class HousekeepingService:
    """Removes scratch directories left behind by interrupted runs."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def cleanup_scratch_dirs(self, scratch_root: Path, max_age_s: float = 86400,
                             now: Optional[float] = None) -> int:
        """Deletes `vfc_*` directories under scratch_root untouched for max_age_s.

        Younger directories may belong to a run in another process and are left alone.
        """
        removed = 0
        if not scratch_root.is_dir():
            return removed
        cutoff = (now if now is not None else time.time()) - max_age_s
        for entry in scratch_root.iterdir():
            if not entry.name.startswith(SCRATCH_PREFIX) or not entry.is_dir():
                continue
            try:
                if entry.stat().st_mtime > cutoff:
                    continue
                shutil.rmtree(entry)
                removed += 1
            except OSError as e:
                self.logger.warning(f"Failed to remove stale scratch dir {entry}: {e}")
        if removed:
            self.logger.info(f"Removed {removed} stale scratch directories from {scratch_root}")
        return removed
