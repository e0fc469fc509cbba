import sys

from syncray.cli import main

sys.exit(main())
