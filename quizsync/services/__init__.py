"""Domain services: local/remote stores, identity, sync, adaptive learning."""
