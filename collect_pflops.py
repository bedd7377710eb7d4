#!/usr/bin/env python3
"""Append one PFLOPS sample to the local history file (run hourly from cron)"""
import sys

from metrics.sampler import main

if __name__ == "__main__":
    sys.exit(main())
