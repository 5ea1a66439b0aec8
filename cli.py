# -*- coding: utf-8 -*-
"""Console script entry points for WardenBot."""

import sys
from pathlib import Path


def alembic_warden() -> None:
    """Run Alembic with the WardenBot config."""
    try:
        from alembic.config import main as alembic_main
    except ImportError:
        print("alembic not installed. Run: pip install -e .[migrations]", file=sys.stderr)
        sys.exit(1)
    alembic_main(argv=["-c", "alembic-warden.ini", *sys.argv[1:]])


def bot() -> None:
    """Run the WardenBot Discord bot."""
    # Warden/ must be on sys.path so internal imports (models, utils, modules) resolve.
    warden_dir = str(Path(__file__).resolve().parent / "Warden")
    if warden_dir not in sys.path:
        sys.path.insert(0, warden_dir)

    from bot import app

    app()
