"""beachhead-companion.

Publishes the domains that running containers declare in their environment
(``BEACHHEAD_DOMAINS`` by default) to Redis, so that a reverse proxy can render
its configuration from them:

 - declaration parsing (``DOMAIN[:http[=PORT]][:https[=PORT]] ...``)
 - a poll loop that republishes every declaration each tick
 - expiring keys, so stopped containers drop out without explicit cleanup
"""
from __future__ import annotations

__version__ = "0.3.0"
