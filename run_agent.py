#!/usr/bin/env python3
"""
QualityMax Local Agent
======================
Thin entry-point. All logic lives in qamax_agent.runner.cli.

Usage:
    python3 run_agent.py run --cloud-url https://app.qamax.co
    python3 run_agent.py status
"""

import sys

from qamax_agent.runner.cli import main

if __name__ == "__main__":
    sys.exit(main())
