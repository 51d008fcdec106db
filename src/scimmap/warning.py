class ScimmapUserWarning(UserWarning):
    """Emitted for suspicious but legal configuration of schemas and mappings."""
