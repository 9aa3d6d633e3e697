"""Service layer: resilience, collaborator adapters and meeting use cases."""
