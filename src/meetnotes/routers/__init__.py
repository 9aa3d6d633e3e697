"""HTTP routers for meetnotes."""
