"""Allow ``python -m dual_anon``."""

from dual_anon.cli import main

main()
