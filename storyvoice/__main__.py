"""Module entrypoint for running Storyvoice as ``python -m storyvoice``."""

from __future__ import annotations

from storyvoice.cli import main


if __name__ == "__main__":
    main()
