from __future__ import annotations

import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)

SKIPPED_DIRECTORIES = {"node_modules", "target", "__pycache__"}


def find_site_configs(workspace: Path, filename: str = "config.toml") -> list[Path]:
    matches: list[Path] = []
    for current, dirnames, filenames in os.walk(workspace):
        dirnames[:] = sorted(
            name
            for name in dirnames
            if not name.startswith(".") and name not in SKIPPED_DIRECTORIES
        )
        if filename in filenames:
            matches.append(Path(current) / filename)
    return matches


def discover_site_config(workspace: Path, filename: str = "config.toml") -> Path | None:
    """Locate the single site configuration file in ``workspace``.

    Zero or several matches both mean "no configuration".
    """
    matches = find_site_configs(workspace.resolve(), filename)
    if len(matches) == 1:
        return matches[0]
    if matches:
        logger.warning(
            "Found %d %s files under %s, not starting the site server",
            len(matches),
            filename,
            workspace,
        )
    else:
        logger.info("No %s under %s, not starting the site server", filename, workspace)
    return None
