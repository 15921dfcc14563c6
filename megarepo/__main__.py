"""Allow running megarepo as python -m megarepo."""

import sys

from megarepo.cli.main import main

if __name__ == "__main__":
    sys.exit(main())
