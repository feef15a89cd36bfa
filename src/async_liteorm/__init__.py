# src/async_liteorm/__init__.py

"""
Async LiteORM Library Initialization.

A small asynchronous ORM over SQLite (aiosqlite): entity metadata declared on
plain classes, parameter-bound condition documents, joins and sub-select
based update/delete.

It initializes a logger with a NullHandler and re-exports the public API.
"""

import logging

# Library logs are discarded unless the consuming application configures
# logging for "async_liteorm".
logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())
logger.propagate = False

from .base.exceptions import (
    EntityDefinitionException,
    InvalidConditionException,
    ObjectNotFoundException,
    ParameterCapacityExceededException,
)
from .base.identifiers import escape_identifier, quote_identifier
from .base.params import SQLParams
from .base.types import RawSQL, StorageType, sql
from .base.transforms import Transformer
from .base.metadata import EntityMeta, IndexSpec, entity, primary, prop
from .base.condition import (
    ConditionFilter,
    ConditionLogical,
    ConditionOperator,
    compile_condition,
    parse_condition,
)
from .base.query_string import parse_query_string
from .base.options import FindOptions, Join, TableSet
from .base.table import Column, Table
from .config import DbSettings
from .db import Db

__all__ = [
    # Orchestration
    "Db",
    "DbSettings",
    "Table",
    "Column",
    "FindOptions",
    "Join",
    "TableSet",
    # Metadata
    "entity",
    "primary",
    "prop",
    "EntityMeta",
    "IndexSpec",
    "StorageType",
    "Transformer",
    # Conditions
    "parse_condition",
    "parse_query_string",
    "compile_condition",
    "ConditionFilter",
    "ConditionLogical",
    "ConditionOperator",
    # SQL helpers
    "escape_identifier",
    "quote_identifier",
    "SQLParams",
    "RawSQL",
    "sql",
    # Exceptions
    "ObjectNotFoundException",
    "ParameterCapacityExceededException",
    "InvalidConditionException",
    "EntityDefinitionException",
    # Logging
    "logger",
]

__version__ = "0.1.0"
