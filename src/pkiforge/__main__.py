"""Allow ``python -m pkiforge``."""

from pkiforge.cli.main import main

main()
