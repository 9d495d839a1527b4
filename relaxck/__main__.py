# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
import sys

from relaxck.driver import main

sys.exit(main())
