"""FastAPI REST API for HookRelay.

This module provides the admin and read HTTP surface: triggering events,
managing subscriptions, test deliveries and delivery history.

Example:
    ```python
    import uvicorn
    from hookrelay.api import create_app

    app = create_app()
    uvicorn.run(app, host="0.0.0.0", port=8000)
    ```

Or run directly:
    ```bash
    uvicorn hookrelay.api:create_app --factory --reload
    ```
"""

from .app import create_app
from .router import router

__all__ = [
    "create_app",
    "router",
]
