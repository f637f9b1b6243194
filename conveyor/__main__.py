"""Allow ``python -m conveyor``."""

from conveyor.cli.main import main

if __name__ == "__main__":
    main()
