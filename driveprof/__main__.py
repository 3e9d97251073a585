"""Allow ``python -m driveprof``."""

from driveprof.cli.main import main

if __name__ == "__main__":
    main()
