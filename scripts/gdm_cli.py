#!/usr/bin/env python3
"""GDM CLI launcher script.

This is a convenience script that can be run directly from the scripts directory.
The actual implementation is in gdm_import.gdm_cli for proper package integration.

Usage:
    python scripts/gdm_cli.py <command> [options]

Or install the package and use:
    gdm-cli <command> [options]
    python -m gdm_import.gdm_cli <command> [options]
"""

from gdm_import.gdm_cli import main

if __name__ == "__main__":
    main()
