"""Request-level orchestration on top of the core components."""
