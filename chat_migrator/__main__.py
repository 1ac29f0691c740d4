#!/usr/bin/env python3
"""
Main execution module for the chat migration tool
"""

from chat_migrator.cli.commands import main

if __name__ == "__main__":
    main()
