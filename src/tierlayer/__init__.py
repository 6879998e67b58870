"""TierLayer - declarative dependency-graph planning and tiered apply."""

__version__ = "0.1.0"
