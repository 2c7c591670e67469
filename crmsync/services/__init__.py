"""Service layer: database-backed operations shared by routers, CLI and worker."""
