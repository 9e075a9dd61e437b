import sys

from kduproc.cli import main

sys.exit(main())
