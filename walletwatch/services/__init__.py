"""Service layer: wallet validation, monitoring and token scoring."""
