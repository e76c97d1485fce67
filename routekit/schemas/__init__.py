"""Wire schemas and reusable validation types."""
