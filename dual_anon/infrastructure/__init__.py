"""Infrastructure layer: configuration, logging, audit trail and reporting."""
