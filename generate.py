#!/usr/bin/env python3
"""Entry point for the daily request scheduler."""

import sys
from pathlib import Path

# Add the project root to path for imports
sys.path.insert(0, str(Path(__file__).parent))

from daily_requests.cli import main

if __name__ == "__main__":
    main()
