import sys

from zkbridge.cli import main

sys.exit(main())
