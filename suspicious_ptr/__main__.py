"""Allow ``python -m suspicious_ptr``."""

import sys

from .main import main

if __name__ == "__main__":
    sys.exit(main())
