"""Route composition, request parsing, validation and response shaping."""
