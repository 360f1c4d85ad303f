"""Internal modules of acmeclient, not part of the public API."""
