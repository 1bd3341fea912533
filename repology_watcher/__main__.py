import sys

from repology_watcher.main import main

sys.exit(main())
