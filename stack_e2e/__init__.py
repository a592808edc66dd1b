"""End-to-end verification harness for a self-hosted media stack."""
