"""Connect transaction and sync orchestration."""
