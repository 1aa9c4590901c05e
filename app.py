#!/usr/bin/env python3
"""
Fund-Flow Indexer - Main Application Entry Point.

============================================================
SINGLE ENTRYPOINT
============================================================
This is the ONE executable entry point for the indexer.

- Compatible with PM2 / systemd process management
- Can be started, stopped, and restarted safely: the warehouse
  tip marker is the resume point
- SIGINT/SIGTERM let every scan loop finish its in-flight block

============================================================
USAGE
============================================================
Direct execution:
    python app.py scan --config networks.yaml
    python app.py server --config networks.yaml
    python app.py status

Environment-based configuration (.env is loaded):
    CONFIG_PATH=networks.yaml DATABASE_URL=postgresql://... python app.py server

============================================================
"""

import sys

from orchestrator.cli import main


if __name__ == "__main__":
    sys.exit(main())
