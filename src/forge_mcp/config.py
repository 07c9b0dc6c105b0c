"""Runtime settings for forge-mcp.

Values come from environment variables, optionally seeded from a ``.env``
file in the working directory (loaded when this module is imported):

- ``FORGE_WORKSPACE``: directory holding one folder per project
- ``FORGE_PROJECT``: active project folder name
- ``FORGE_LOG_LEVEL``: logging level name
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import find_dotenv, load_dotenv
from platformdirs import user_data_dir

load_dotenv(find_dotenv(usecwd=True), override=False)


def get_data_dir() -> Path:
    """Return the platform data directory for forge."""
    return Path(user_data_dir("forge"))


@dataclass
class Settings:
    workspace_dir: Path = field(
        default_factory=lambda: Path(
            os.environ.get("FORGE_WORKSPACE", get_data_dir() / "projects")
        ).expanduser()
    )
    project_name: str = field(
        default_factory=lambda: os.environ.get("FORGE_PROJECT", "default")
    )
    log_level: str = field(
        default_factory=lambda: os.environ.get("FORGE_LOG_LEVEL", "WARNING").upper()
    )

    @property
    def project_path(self) -> Path:
        """Folder of the active project."""
        return self.workspace_dir / self.project_name

    def path_for(self, project_name: str) -> Path:
        return self.workspace_dir / project_name

    def ensure_workspace(self) -> Path:
        """Create the workspace directory if it does not exist."""
        self.workspace_dir.mkdir(parents=True, exist_ok=True)
        return self.workspace_dir


settings = Settings()
