#!/usr/bin/env python3
"""Run the funnelboard API with auto-reload for local development.

Settings (DATABASE_URL, JWT_SECRET, ...) come from the environment or a
`.env` file next to this script; see funnelboard/config.py.
"""

import os

import uvicorn


def main():
    port = int(os.getenv("PORT", "8000"))
    print(f"funnelboard API on http://localhost:{port} (docs at /docs)")
    uvicorn.run(
        "funnelboard.main:app",
        host=os.getenv("HOST", "127.0.0.1"),
        port=port,
        reload=True,
        reload_dirs=["funnelboard"],
        log_level="info",
    )


if __name__ == "__main__":
    main()
