"""Backend writers, one per CRM backend type."""
