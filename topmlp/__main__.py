import sys

from topmlp.cli import main

sys.exit(main())
