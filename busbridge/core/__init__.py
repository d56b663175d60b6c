"""Core engines: request signing, credential lifecycle and dispatch orchestration."""
