"""Datasource descriptors and pooled connections."""

from keygraph.datasources.connections import ConnectionManager, DatasourceConnectionError
from keygraph.datasources.models import Datasource, DatasourceType

__all__ = [
    "ConnectionManager",
    "Datasource",
    "DatasourceConnectionError",
    "DatasourceType",
]
