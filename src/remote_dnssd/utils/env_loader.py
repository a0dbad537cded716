"""Environment loader utilities for early initialization.

DiscoveryConfig は環境変数を読むため、CLI の起動直後に .env を読み込んでおく。
"""

from pathlib import Path
from typing import Optional

from dotenv import find_dotenv, load_dotenv


def _package_env() -> Optional[str]:
    """Project-root .env next to src/ (editable installs)."""
    package_env = Path(__file__).parent.parent.parent.parent / ".env"
    if package_env.exists():
        return str(package_env)
    return None


def load_dotenv_early(override: bool = False) -> Optional[str]:
    """Load the nearest .env file. Returns the path that was loaded."""
    env_path = find_dotenv(usecwd=True) or _package_env()
    if env_path:
        load_dotenv(env_path, override=override)
    return env_path or None
