"""Configuration, logging and error handling shared by routekit."""
