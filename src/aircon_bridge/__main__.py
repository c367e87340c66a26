"""Entrypoint for ``python -m aircon_bridge``."""

from .cli import main

if __name__ == "__main__":
    main()
