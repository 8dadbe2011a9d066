"""Long-lived HTTP service running browser automation steps against reusable sessions.

Callers POST an ordered list of actions (navigate, click, fill, wait,
snapshot) to /run and get back one result per step, each with a
screenshot, either as a single JSON body or as a server-sent event stream.
"""

from browser_worker.config import Config, load
from browser_worker.server import create_app

__all__ = ["Config", "create_app", "load"]
