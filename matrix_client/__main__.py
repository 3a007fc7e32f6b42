import sys

from matrix_client.cli import main

sys.exit(main())
