import sys

from masjid_display.service import main

sys.exit(main())
