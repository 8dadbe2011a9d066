"""Entry point: python -m browser_worker"""
from __future__ import annotations

from browser_worker.server import main

if __name__ == "__main__":
    main()
