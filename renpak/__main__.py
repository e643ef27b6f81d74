import sys

from renpak.runner import main

sys.exit(main())
