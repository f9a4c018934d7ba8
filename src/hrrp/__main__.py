"""Entry point for ``python -m hrrp``."""

import sys

from .cli import main

sys.exit(main())
