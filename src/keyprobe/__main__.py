import sys

from keyprobe.cli import main

sys.exit(main())
