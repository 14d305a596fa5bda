"""Allow ``python -m nullflow``."""

from nullflow.cli import main

raise SystemExit(main())
