"""
Entry point for running the service as a module.

Usage:
    python -m autosweep_service
"""

from autosweep_service.cli import main

if __name__ == "__main__":
    main()
