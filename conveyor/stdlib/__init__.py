"""Standard library of adapters, ledgers and secret stores."""
