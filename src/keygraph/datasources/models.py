"""Datasource descriptors."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class DatasourceType(str, Enum):
    """Supported datasource engines."""

    DUCKDB = "duckdb"
    POSTGRES = "postgres"
    MSSQL = "mssql"
    SQLITE = "sqlite"


class Datasource(BaseModel):
    """A project's connection to a live relational datasource.

    connection_config keys:
        duckdb: ``path`` (file path or ``:memory:``)
        others: ``url`` (SQLAlchemy URL, e.g. ``postgresql+psycopg://...``)
    """

    datasource_id: str
    project_id: str
    name: str = ""
    datasource_type: DatasourceType
    connection_config: dict[str, Any] = Field(default_factory=dict)
