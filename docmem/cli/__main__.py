"""Allow ``python -m docmem.cli`` execution."""

from docmem.cli.manage import main

main()
