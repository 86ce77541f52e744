import sys

from osmoload.cli import main

sys.exit(main())
