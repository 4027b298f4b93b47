import sys

from terrafarm.cli import main

sys.exit(main())
