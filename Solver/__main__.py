"""Main entry point for Meles Solver."""

from .cli import main

if __name__ == "__main__":
    main()
