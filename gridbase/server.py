"""
Web server for gridbase workspaces.
Exposes table loading, view-state updates and cell/row/column passthroughs as a REST API.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .errors import NotFoundError, PersistenceError, ValidationError
from .workspace import Workspace


# Pydantic models for API
class TableCreateRequest(BaseModel):
    name: str


class ColumnCreateRequest(BaseModel):
    name: str
    type: str = "TEXT"


class ColumnRenameRequest(BaseModel):
    name: str


class RowCreateRequest(BaseModel):
    cells: Dict[str, Optional[str]] = {}


class CellUpdateRequest(BaseModel):
    value: Optional[str] = ""


class FilterUpdateRequest(BaseModel):
    filters: Union[Dict[str, Any], str, None] = None


class SortKeyModel(BaseModel):
    columnName: str
    columnType: str = "TEXT"
    order: str = "ASC"


class SortRequest(BaseModel):
    columns: List[SortKeyModel] = []


class TableSummary(BaseModel):
    id: int
    name: str
    filtering: str
    sorting: str


# Global workspace instance
_workspace: Optional[Workspace] = None


def get_workspace() -> Workspace:
    """Get the current workspace instance."""
    if _workspace is None:
        raise HTTPException(status_code=500, detail="Workspace not initialized")
    return _workspace


def init_workspace(workspace_path: Path, echo: bool = False):
    """Initialize the workspace."""
    global _workspace
    _workspace = Workspace.open(workspace_path, echo=echo)


def set_workspace(workspace: Optional[Workspace]):
    """Set the workspace instance directly (for testing)."""
    global _workspace
    _workspace = workspace


def create_app(workspace_path: Path, echo: bool = False) -> FastAPI:
    """Create FastAPI application with initialized workspace."""
    init_workspace(workspace_path, echo=echo)
    return app


# Create FastAPI app
app = FastAPI(
    title="gridbase",
    description="Tables with persisted filter and sort views",
    version="0.1.0"
)

# Enable CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(PersistenceError)
async def persistence_error_handler(request: Request, exc: PersistenceError):
    return JSONResponse(status_code=503, content={"detail": str(exc), "retryable": True})


def _table_summary(table) -> TableSummary:
    return TableSummary(
        id=table.id,
        name=table.name,
        filtering=table.filtering or "",
        sorting=table.sorting or "",
    )


# ============================================================================
# Tables and views
# ============================================================================

@app.get("/api/tables", response_model=List[TableSummary])
async def list_tables():
    """List all tables in the workspace."""
    ws = get_workspace()
    return [_table_summary(t) for t in ws.list_tables()]


@app.post("/api/tables", response_model=TableSummary, status_code=201)
async def create_table(request: TableCreateRequest):
    """Create an empty table."""
    ws = get_workspace()
    return _table_summary(ws.create_table(request.name))


@app.get("/api/tables/{table_id}")
async def get_table(table_id: int, search: Optional[str] = Query(None)):
    """Table columns and rows with the stored filter applied, in persisted order."""
    ws = get_workspace()
    return ws.get_table(table_id, search=search).to_dict()


@app.delete("/api/tables/{table_id}")
async def delete_table(table_id: int):
    ws = get_workspace()
    ws.delete_table(table_id)
    return {"message": "Table deleted successfully"}


@app.put("/api/tables/{table_id}/filter")
async def update_table_filter(table_id: int, request: FilterUpdateRequest):
    """Store a new filter tree. Row order is unchanged."""
    ws = get_workspace()
    group = ws.update_table_filter(table_id, request.filters)
    return {"filtering": group.to_dict()}


@app.post("/api/tables/{table_id}/sort")
async def sort_table(table_id: int, request: SortRequest):
    """Sort by the given keys; an empty list restores insertion order."""
    ws = get_workspace()
    row_ids = ws.sort_table(table_id, [key.model_dump() for key in request.columns])
    return {"rowIds": row_ids, "sorting": [k.to_dict() for k in ws.get_sort(table_id)]}


@app.post("/api/tables/{table_id}/reset-order")
async def reset_order(table_id: int):
    """Restore insertion order and clear the stored sort."""
    ws = get_workspace()
    return {"rowIds": ws.reset_order(table_id), "sorting": []}


@app.post("/api/tables/{table_id}/resort")
async def resort_table(table_id: int):
    """Re-run the stored sort after rows were added or edited."""
    ws = get_workspace()
    return {"rowIds": ws.reapply_sort(table_id)}


# ============================================================================
# Row / column / cell passthroughs
# ============================================================================

@app.post("/api/tables/{table_id}/rows", status_code=201)
async def create_row(table_id: int, request: RowCreateRequest):
    """Append a row; every column gets a cell."""
    ws = get_workspace()
    row = ws.create_row(table_id, request.cells)
    snapshot = ws.load_table(table_id, row_ids=[row.id])
    return snapshot.rows[0].to_dict()


@app.post("/api/tables/{table_id}/columns", status_code=201)
async def create_column(table_id: int, request: ColumnCreateRequest):
    """Add a column; every existing row gets an empty cell."""
    ws = get_workspace()
    column = ws.create_column(table_id, request.name, request.type)
    return {"id": column.id, "name": column.name, "type": column.type, "order": column.order}


@app.patch("/api/columns/{column_id}")
async def rename_column(column_id: int, request: ColumnRenameRequest):
    ws = get_workspace()
    column = ws.rename_column(column_id, request.name)
    return {"id": column.id, "name": column.name, "type": column.type, "order": column.order}


@app.delete("/api/columns/{column_id}")
async def delete_column(column_id: int):
    ws = get_workspace()
    ws.delete_column(column_id)
    return {"message": "Column deleted successfully"}


@app.delete("/api/rows/{row_id}")
async def delete_row(row_id: int):
    ws = get_workspace()
    ws.delete_row(row_id)
    return {"message": "Row deleted successfully"}


@app.patch("/api/cells/{cell_id}")
async def update_cell(cell_id: int, request: CellUpdateRequest):
    """Set a cell's value."""
    ws = get_workspace()
    cell = ws.update_cell(cell_id, request.value)
    return {"id": cell.id, "columnName": cell.column_name, "type": cell.type, "value": cell.value}
