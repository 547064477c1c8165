"""AI shopping assistant backend for the storefront."""
