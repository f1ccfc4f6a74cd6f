"""
Entry point for ``python -m charity_ledger``.

Copyright (c) 2026 Momentum. All rights reserved.
"""

import sys

from charity_ledger.cli import main

sys.exit(main())
