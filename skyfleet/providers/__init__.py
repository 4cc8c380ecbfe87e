"""Provider API and remote shell implementations."""
