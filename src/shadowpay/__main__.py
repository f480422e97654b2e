"""Allow ``python -m shadowpay``."""

import sys

from shadowpay.main import main

if __name__ == "__main__":
    sys.exit(main())
