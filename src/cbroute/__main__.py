"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Run the router: `python -m cbroute`.
"""

from __future__ import annotations

from .server.app import run


def main() -> None:
    run()


if __name__ == "__main__":
    main()
