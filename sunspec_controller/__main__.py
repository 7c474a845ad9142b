import sys

from sunspec_controller.cli import main

sys.exit(main())
