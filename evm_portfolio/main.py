"""Entry point: ``python -m evm_portfolio.main <command>``."""
from .cli import main

if __name__ == "__main__":
    main()
