import sys

from sp_bridge.app import main

sys.exit(main())
