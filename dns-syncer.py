#!/usr/bin/env python3

"""Run dns-syncer from a source checkout.

The project is packaged under `src/dns_syncer`; this wrapper allows
`./dns-syncer.py --config config.yaml` without installing it first.
"""

import sys
from pathlib import Path


sys.path.insert(0, str(Path(__file__).resolve().parent / "src"))

from dns_syncer.cli import main  # noqa: E402


if __name__ == "__main__":
    main()
