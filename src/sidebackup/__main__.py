"""
Entry point for running SideBackup as a module.

Usage:
    python -m sidebackup [command] [options]
"""

from sidebackup.cli import main

if __name__ == "__main__":
    main()
