from pathlib import Path

def get_project_root() -> Path:
    """Returns the directory holding the monoshelf package."""
    # This file is in monoshelf/utils/paths.py
    # Root is 2 levels up
    return Path(__file__).resolve().parent.parent.parent

def get_templates_dir() -> Path:
    """Returns the directory of the reader page templates."""
    return Path(__file__).resolve().parent.parent / "web" / "templates"

def ensure_dir_exists(path: Path) -> None:
    """Ensures that a directory exists."""
    if not path.exists():
        path.mkdir(parents=True, exist_ok=True)
