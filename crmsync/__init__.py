"""CRM write job queue and multi-backend dispatch engine."""
