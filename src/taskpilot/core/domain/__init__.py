"""Core domain: execution state, actions, approval policy and protocol events."""
