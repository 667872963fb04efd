"""Core sync components for syncdb.

The engine lives in syncdb.core.engine; it is not re-exported here because
it depends on syncdb.storage, which itself reads snapshot state from this
package.
"""

from syncdb.core.codec import StatementCodec, StructuredCodec, get_codec
from syncdb.core.pipeline import TablePipeline, TableResult
from syncdb.core.resolver import DependencyResolver, resolve_order
from syncdb.core.selection import TableSelection
from syncdb.core.state import ExportManifest, RunProgress, StateManager

__all__ = [
    "DependencyResolver",
    "ExportManifest",
    "RunProgress",
    "StateManager",
    "StatementCodec",
    "StructuredCodec",
    "TablePipeline",
    "TableResult",
    "TableSelection",
    "get_codec",
    "resolve_order",
]
