"""HTTP API for Checkup-Ledger."""
