"""Entry point for ``python -m mcsession``."""

import sys

from .cli import main


sys.exit(main())
