"""Secret loading and at-rest encryption helpers."""
