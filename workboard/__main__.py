"""Entry point for running workboard as a module: ``python -m workboard``."""

from workboard.cli.main import main

if __name__ == "__main__":
    main()
