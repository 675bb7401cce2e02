import sys

from graceful_server.main import main

sys.exit(main())
