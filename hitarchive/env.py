import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


def load_env(env_path: Optional[Path] = None) -> bool:
    """Load .env from the project root if present.

    Variables already exported in the environment win over the file.
    Returns True when a file was loaded.
    """
    env_path = Path(env_path) if env_path else Path.cwd() / ".env"
    if not env_path.exists():
        return False
    return load_dotenv(dotenv_path=env_path, override=False)


def get_env(*keys: str) -> Optional[str]:
    """First non-empty value among ``keys``."""
    for key in keys:
        value = os.getenv(key)
        if value:
            return value.strip()
    return None
