"""
gridbase - user-defined tables with persisted filter and sort views, on SQLAlchemy + SQLite.

Main API:
    from gridbase import Workspace
    from pathlib import Path

    # Open or create a workspace
    ws = Workspace.open(Path("/path/to/workspace"))

    # Define a table with a dynamic schema
    table = ws.create_table("People")
    ws.create_column(table.id, "Name", "TEXT")
    ws.create_column(table.id, "Age", "NUMBER")
    ws.create_row(table.id, {"Name": "Bob", "Age": "30"})

    # Persist a filter and a sort, then load the view
    ws.update_table_filter(table.id, {
        "combineWith": "AND",
        "conditions": [{"columnName": "Name", "operator": "contains", "value": "b"}]
    })
    ws.sort_table(table.id, [{"columnName": "Age", "columnType": "NUMBER", "order": "DESC"}])
    snapshot = ws.get_table(table.id)

    # Always close when done
    ws.close()
"""

from .workspace import Workspace

__version__ = "0.1.0"
__all__ = ["Workspace"]
