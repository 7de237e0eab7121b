"""Allow `python -m scripts` by running the region load."""

import sys

from scripts.load_regions import main

sys.exit(main())
