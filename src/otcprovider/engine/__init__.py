"""Resource reconciliation engine."""
