import sys

from lfspkg.cli import main

sys.exit(main())
