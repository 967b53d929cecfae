"""Entry point for running m365admin as a module.

Usage:
    python -m m365admin devices --filter MTR
    python -m m365admin --help
"""

from m365admin.cli import main

if __name__ == "__main__":
    main()
