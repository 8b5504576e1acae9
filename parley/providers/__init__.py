"""Model provider contracts used by the dialogue engine."""
