"""Main entry point when executing jobpoller as a package.

This allows running the package using python -m jobpoller.
"""

from jobpoller.main import cli_entry_point

if __name__ == "__main__":
    cli_entry_point()
