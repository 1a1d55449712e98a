"""Account linking, balance synchronization and M-Pesa reconciliation services."""
