"""glTF engines package."""
