"""Concrete adapters: source connectors, catalog storage, rate-limit stores."""
