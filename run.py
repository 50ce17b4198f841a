"""Exporter entry point."""

from insights_exporter.runner import main

if __name__ == "__main__":
    main()
