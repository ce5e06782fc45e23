"""Entrypoint: python -m chat_sync"""
from __future__ import annotations

from chat_sync.workers.inbox_watcher import main

if __name__ == "__main__":
    main()
