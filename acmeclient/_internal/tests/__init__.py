"""acmeclient tests."""
