"""Allow ``python -m gigz_ingest.cli`` execution."""

from gigz_ingest.cli.ingest import main

main()
