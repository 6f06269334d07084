"""
Per-user application directories for logs and event journals.
"""

import os
import tempfile
from pathlib import Path
from typing import Optional

APP_NAME = "multicloud-ecs"


def get_secure_app_directory(
    app_name: str = APP_NAME, subdirectory: Optional[str] = None
) -> Path:
    """
    Get a writable per-user directory for the application.

    Uses %LOCALAPPDATA% on Windows and the XDG data directory elsewhere. If
    that location cannot be written, a fresh owner-only temporary directory
    is returned instead.

    Args:
        app_name: Name of the application
        subdirectory: Optional subdirectory within the app directory

    Returns:
        Path: Writable directory path
    """
    base_dir = _get_platform_specific_directory(app_name)
    app_dir = base_dir / subdirectory if subdirectory else base_dir

    try:
        app_dir.mkdir(parents=True, exist_ok=True)
        _test_directory_writable(app_dir)
        return app_dir
    except OSError:
        return _create_secure_temp_directory(f"{app_name}_", f"_{subdirectory or 'data'}")


def _get_platform_specific_directory(app_name: str) -> Path:
    if os.name == "nt":
        local_app_data = os.environ.get("LOCALAPPDATA")
        if local_app_data:
            return Path(local_app_data) / app_name
        return Path(tempfile.gettempdir()) / app_name

    xdg_data_home = os.environ.get("XDG_DATA_HOME")
    if xdg_data_home:
        return Path(xdg_data_home) / app_name
    return Path.home() / ".local" / "share" / app_name


def _test_directory_writable(directory: Path) -> None:
    """Raise OSError if the directory cannot be written."""
    test_file = directory / ".write_test"
    test_file.touch()
    test_file.unlink()


def _create_secure_temp_directory(prefix: str, suffix: str) -> Path:
    temp_dir = Path(tempfile.mkdtemp(prefix=prefix, suffix=suffix))
    os.chmod(temp_dir, 0o700)  # owner only
    return temp_dir
