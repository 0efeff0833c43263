import sys

from cranker.handler import main

sys.exit(main())
