"""Allow ``python -m cowvm``."""

from cowvm import cli

if __name__ == "__main__":
    raise SystemExit(cli.main())
