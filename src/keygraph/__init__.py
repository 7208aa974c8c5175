"""keygraph: relationship discovery and cardinality inference for relational datasources."""

__version__ = "0.1.0"
