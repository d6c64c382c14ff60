"""Context data sources: address history, reference prices, entity labels."""
