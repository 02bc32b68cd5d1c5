#!/usr/bin/env python3
"""
Indicator Monitor - Main Application Entry Point.

============================================================
SINGLE ENTRYPOINT
============================================================
This is the ONE executable entry point for the monitor.

- Compatible with PM2 / systemd process management
- Can be started, stopped, and restarted safely
- Handles SIGINT / SIGTERM gracefully (drains in-flight runs)

============================================================
USAGE
============================================================
Direct execution:
    python app.py --indicators-file indicators.json \\
        --collector my_collectors:collector

With PM2:
    pm2 start app.py --interpreter python --name indicator-monitor

Environment-based configuration (.env honoured):
    TICK_INTERVAL_SECONDS=60 METRIC_COLLECTOR=my_collectors:collector python app.py

============================================================
"""

import sys
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.absolute()
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from orchestrator.cli import main


if __name__ == "__main__":
    sys.exit(main())
