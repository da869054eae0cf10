import sys

from resc.cli import main

sys.exit(main())
