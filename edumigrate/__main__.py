"""Allow ``python -m edumigrate``."""

import sys

from .cli import main

sys.exit(main())
