"""
SQLAlchemy models for gridbase.

Entity-attribute-value layout: a Table owns Columns and Rows, and every
(Row, Column) pair owns exactly one Cell holding the value as text.
"""

from datetime import datetime
from enum import Enum
from typing import List

import sqlalchemy as sa
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class ColumnType(str, Enum):
    """Semantic type of a column; governs filter and sort interpretation."""
    TEXT = "TEXT"
    NUMBER = "NUMBER"


class Table(Base):
    """
    A user table with a dynamic schema.

    ``filtering`` and ``sorting`` hold the serialized view state (empty string
    means inactive). ``version`` is bumped whenever the filter or the column
    set changes and keys the compiled-filter cache.
    """
    __tablename__ = 'tables'

    id = sa.Column(sa.Integer, primary_key=True)
    name = sa.Column(sa.String(200), nullable=False, index=True)

    # Persisted view state
    filtering = sa.Column(sa.Text, nullable=False, default='')
    sorting = sa.Column(sa.Text, nullable=False, default='')
    version = sa.Column(sa.Integer, nullable=False, default=0)

    created_at = sa.Column(sa.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = sa.Column(sa.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    columns = relationship(
        'Column', back_populates='table', cascade='all, delete-orphan',
        order_by='Column.order'
    )
    rows = relationship(
        'Row', back_populates='table', cascade='all, delete-orphan',
        order_by='Row.order'
    )

    @property
    def column_names(self) -> List[str]:
        return [col.name for col in self.columns]

    def bump_version(self):
        self.version = (self.version or 0) + 1

    def __repr__(self):
        return f"<Table(id={self.id}, name='{self.name}')>"


class Column(Base):
    """Column definition. ``name`` is the key filters and sorts refer to."""
    __tablename__ = 'columns'

    id = sa.Column(sa.Integer, primary_key=True)
    table_id = sa.Column(sa.Integer, sa.ForeignKey('tables.id', ondelete='CASCADE'), nullable=False)
    name = sa.Column(sa.String(200), nullable=False)
    type = sa.Column(sa.String(10), nullable=False, default=ColumnType.TEXT.value)
    order = sa.Column(sa.Integer, nullable=False, default=0)

    table = relationship('Table', back_populates='columns')
    cells = relationship('Cell', back_populates='column', cascade='all, delete-orphan',
                         passive_deletes=True)

    __table_args__ = (
        sa.UniqueConstraint('table_id', 'name', name='uix_column_table_name'),
        sa.Index('idx_column_table_order', 'table_id', 'order'),
    )

    @property
    def column_type(self) -> ColumnType:
        return ColumnType(self.type)

    def __repr__(self):
        return f"<Column(id={self.id}, name='{self.name}', type={self.type})>"


class Row(Base):
    """
    A table row.

    ``order`` is the current physical rank; ``orig_order`` records insertion
    sequence and never changes after creation.
    """
    __tablename__ = 'rows'

    id = sa.Column(sa.Integer, primary_key=True)
    table_id = sa.Column(sa.Integer, sa.ForeignKey('tables.id', ondelete='CASCADE'), nullable=False)
    order = sa.Column(sa.Integer, nullable=False)
    orig_order = sa.Column(sa.Integer, nullable=False)

    created_at = sa.Column(sa.DateTime, default=datetime.utcnow, nullable=False)

    table = relationship('Table', back_populates='rows')
    cells = relationship('Cell', back_populates='row', cascade='all, delete-orphan',
                         passive_deletes=True)

    __table_args__ = (
        sa.Index('idx_row_table_order', 'table_id', 'order'),
        sa.UniqueConstraint('table_id', 'orig_order', name='uix_row_table_orig_order'),
    )

    def __repr__(self):
        return f"<Row(id={self.id}, order={self.order}, orig_order={self.orig_order})>"


class Cell(Base):
    """
    A single value. ``column_name`` and ``type`` are copied from the owning
    column so filters and sorts never need to join ``columns``.
    """
    __tablename__ = 'cells'

    id = sa.Column(sa.Integer, primary_key=True)
    row_id = sa.Column(sa.Integer, sa.ForeignKey('rows.id', ondelete='CASCADE'), nullable=False)
    column_id = sa.Column(sa.Integer, sa.ForeignKey('columns.id', ondelete='CASCADE'), nullable=False)
    column_name = sa.Column(sa.String(200), nullable=False)
    type = sa.Column(sa.String(10), nullable=False, default=ColumnType.TEXT.value)
    value = sa.Column(sa.Text, nullable=False, default='')

    row = relationship('Row', back_populates='cells')
    column = relationship('Column', back_populates='cells')

    __table_args__ = (
        sa.UniqueConstraint('row_id', 'column_id', name='uix_cell_row_column'),
        sa.Index('idx_cell_row_name', 'row_id', 'column_name'),
        sa.Index('idx_cell_column', 'column_id'),
    )

    def __repr__(self):
        return f"<Cell(id={self.id}, column='{self.column_name}', value='{self.value[:30]}')>"
