"""Entry point for ``python -m taintvm``."""

import sys

from taintvm.cli import main

sys.exit(main())
