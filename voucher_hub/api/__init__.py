"""HTTP API for the voucher hub."""
