"""Entry point for ``python -m peerdoctor.coordination``."""

from peerdoctor.coordination.server import main

if __name__ == "__main__":
    main()
