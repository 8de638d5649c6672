import sys

from aliensynth.cli import main

sys.exit(main())
