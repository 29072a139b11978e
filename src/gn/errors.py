class ConfigurationError(Exception):
    """Invalid user input; raised before any network activity."""
