#!/usr/bin/env python3
"""
Rate-limited Google Chat to Slack migration tool
"""

__version__ = "0.1.0"

from chat_migrator.core.config import load_config
from chat_migrator.core.coordinator import MigrationCoordinator
from chat_migrator.core.executor import BackoffExecutor
from chat_migrator.core.registry import RateLimiterRegistry
