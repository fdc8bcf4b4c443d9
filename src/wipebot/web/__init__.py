"""REST API for WipeBot.

Provides a FastAPI JSON interface for:
- Filter and group management per tenant
- Running and testing cleanups
- Cleanup statistics
- Scheduler status and health
"""

from wipebot.web.app import create_app

__all__ = ["create_app"]
