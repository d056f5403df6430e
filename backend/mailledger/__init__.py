"""Mail ledger backend: bank notification emails to classified transactions."""
