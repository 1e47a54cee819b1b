'''Reading record types from the stage or history tables of a reading mode.

Callers describe what they want in terms of the record type and its field
names; StagedQuery swaps in the physical tables for the mode and joins the
tables of the hierarchy on the record id::

    query = StagedQuery(schema, 'Page', filters={'Title': 'About'},
            order_by=['-Version'])
    rows = query.execute(connection, ReadingMode.for_stage('Live'))

In a stage mode every hierarchy table is replaced by its stage table. In
archive mode the '_versions' tables are used instead, joined on record id
and version number and restricted to the pinned version (or, for a date, to
the latest version of each record written on or before it).

Every row is checked against its ClassName: a record whose concrete type
needs a table that has no row for it is an IntegrityError, not a row with
missing fields.
'''
from sqlalchemy import and_, func, select

import logging
logger = logging.getLogger('sdm')

from sdm import mode as reading
from sdm.errors import BrokenHistoryError, IntegrityError, NotFoundError
from .base import LAST_EDITED, RECORD_ID, VERSION


def resolve_mode(schema, name, mode=None):
    '''The reading mode a read of type name should use.

    An explicit mode must name a stage of the type. Without one the mode of
    the running context is used; if that names a stage the type does not
    have (or nothing is set) the type's primal stage is read.
    '''
    if mode is not None:
        return schema.resolve_stage(name, mode)
    return schema.resolve_stage(name, reading.current(), strict=False)


def concrete_type(schema, name, class_name, record_id):
    '''Record type a row with class_name should be read as.

    Obsolete class names are read as type name, on a best effort basis.
    '''
    if class_name is None or schema.classnames.is_obsolete(name, class_name):
        logger.warning('%s %s has obsolete class name %r, reading it as %s'
                % (schema.base_type(name).name, record_id, class_name, name))
        return schema.record_type(name)
    return schema.record_type(class_name)


class Snapshot(object):
    '''One record's rows across every table of its hierarchy.

    rows maps each logical table to its versioned column values, so the same
    snapshot can be written to any stage or history table.
    '''

    def __init__(self, key, record_id, class_name, version, rows):
        self.key = key
        self.record_id = record_id
        self.class_name = class_name
        self.version = version
        self.rows = rows

    def as_dict(self):
        out = {self.key: self.record_id, VERSION: self.version}
        for values in self.rows.values():
            out.update(values)
        return out

    def __repr__(self):
        return '<Snapshot %s %s v%s>' % (self.class_name, self.record_id,
                self.version)


def _data(schema, table, row):
    return dict((key, row[key]) for key in schema.data_columns(table))


def load_stage_snapshot(connection, schema, name, record_id, stage):
    '''Read record_id from stage across its whole hierarchy.

    @raise NotFoundError: the record has no row in stage.
    @raise IntegrityError: it has a base row but lacks a subclass row.
    '''
    base_table = schema.base_type(name).table
    key = schema.primary_key(base_table)
    physical = schema.stage_table(base_table, stage)
    base_row = connection.execute(select(physical).where(
        physical.c[key] == record_id)).mappings().first()
    if base_row is None:
        raise NotFoundError('%s %s is not in stage %s' % (name, record_id,
            stage))
    class_name = base_row[schema.class_name_column]
    concrete = concrete_type(schema, name, class_name, record_id)
    rows = {base_table: _data(schema, base_table, base_row)}
    for table in concrete.tables()[1:]:
        physical = schema.stage_table(table, stage)
        table_key = schema.primary_key(table)
        row = connection.execute(select(physical).where(
            physical.c[table_key] == record_id)).mappings().first()
        if row is None:
            msg = '%s %s (%s) has no row in %s' % (name, record_id,
                    class_name, physical.name)
            raise IntegrityError(msg)
        rows[table] = _data(schema, table, row)
    return Snapshot(key, record_id, class_name, base_row[VERSION], rows)


def load_version_snapshot(connection, schema, name, record_id, version):
    '''Read version of record_id from the history tables.

    @raise NotFoundError: there is no such version.
    @raise BrokenHistoryError: a subclass history table lacks the version.
    '''
    base_table = schema.base_type(name).table
    history = schema.versions_table(base_table)
    base_row = connection.execute(select(history).where(
        history.c[RECORD_ID] == record_id,
        history.c[VERSION] == version)).mappings().first()
    if base_row is None:
        raise NotFoundError('%s %s has no version %s' % (name, record_id,
            version))
    class_name = base_row[schema.class_name_column]
    concrete = concrete_type(schema, name, class_name, record_id)
    rows = {base_table: _data(schema, base_table, base_row)}
    for table in concrete.tables()[1:]:
        history = schema.versions_table(table)
        row = connection.execute(select(history).where(
            history.c[RECORD_ID] == record_id,
            history.c[VERSION] == version)).mappings().first()
        if row is None:
            msg = 'Version %s of %s %s has no row in %s' % (version, name,
                    record_id, history.name)
            raise BrokenHistoryError(msg)
        rows[table] = _data(schema, table, row)
    return Snapshot(schema.primary_key(base_table), record_id, class_name,
            version, rows)


class StagedQuery(object):
    '''A read of a record type, independent of stage or version.

    @param filters: dict of field name to value. Lists, tuples and sets
        become IN clauses, None becomes IS NULL.
    @param where: callable taking a dict of field name to column and
        returning an extra SQLAlchemy clause, e.g.
        ``lambda f: f['Title'].like('A%')``.
    @param order_by: field names, prefixed with '-' for descending order.
        Defaults to the record id.
    '''

    def __init__(self, schema, name, filters=None, where=None, order_by=None,
            limit=None, offset=None):
        self.schema = schema
        self.name = name
        self.record_type = schema.record_type(name)
        self.filters = dict(filters or {})
        self.where = where
        self.order_by = list(order_by or [])
        self.limit = limit
        self.offset = offset

    def _tables(self, mode):
        '''(logical, physical, record id column) for each table read.'''
        logical = self.schema.hierarchy_tables(self.name) + \
                self.schema.descendant_tables(self.name)
        out = []
        for table in logical:
            if mode.is_archive:
                physical = self.schema.versions_table(table)
                key = physical.c[RECORD_ID]
            else:
                physical = self.schema.stage_table(table, mode.stage)
                key = physical.c[self.schema.primary_key(table)]
            out.append((table, physical, key))
        return out

    def statement(self, mode):
        '''Build the select for mode.

        @return: (select, fields, presence, labels) where fields maps field
            names to physical columns, presence lists (logical table, label)
            of the columns telling whether a joined table had a row and
            labels maps (table name, field) to the label of its column.
            Sibling types may share field names, so data columns are
            labelled by table position.
        '''
        tables = self._tables(mode)
        own = set(t.name for t in self.schema.hierarchy_tables(self.name))
        base_logical, base_physical, base_key = tables[0]
        key_name = self.schema.primary_key(base_logical)
        version = base_physical.c[VERSION]
        fields = {key_name: base_key, VERSION: version}
        columns = [base_key.label(key_name), version.label(VERSION)]
        joined = base_physical
        presence = []
        labels = {}
        for index, (logical, physical, key) in enumerate(tables):
            if index > 0:
                # always join on the record id, never on position
                onclause = key == base_key
                if mode.is_archive:
                    onclause = and_(onclause, physical.c[VERSION] == version)
                joined = joined.outerjoin(physical, onclause)
                label = '_sdm_row_%d' % index
                columns.append(key.label(label))
                presence.append((logical, label))
            for col_key in self.schema.data_columns(logical):
                # subtype columns are returned but cannot be filtered on
                if logical.name in own:
                    fields[col_key] = physical.c[col_key]
                label = '_sdm_%d_%s' % (index, col_key)
                labels[(logical.name, col_key)] = label
                columns.append(physical.c[col_key].label(label))

        query = select(*columns).select_from(joined)
        if mode.is_archive and mode.version is not None:
            query = query.where(version == mode.version)
        elif mode.is_archive:
            history = base_physical.alias('history')
            latest = select(func.max(history.c[VERSION])).where(
                    history.c[RECORD_ID] == base_key,
                    history.c[LAST_EDITED] <= mode.date,
                    ).scalar_subquery()
            query = query.where(version == latest)
        if self.record_type.parent is not None:
            class_column = fields[self.schema.class_name_column]
            query = query.where(class_column.in_(
                self.schema.subclasses(self.name)))

        for field, value in self.filters.items():
            column = self._field(fields, field)
            if isinstance(value, (list, tuple, set, frozenset)):
                query = query.where(column.in_(list(value)))
            elif value is None:
                query = query.where(column.is_(None))
            else:
                query = query.where(column == value)
        if self.where is not None:
            query = query.where(self.where(fields))

        ordering = []
        for field in self.order_by:
            if field.startswith('-'):
                ordering.append(self._field(fields, field[1:]).desc())
            else:
                ordering.append(self._field(fields, field).asc())
        if not ordering:
            ordering.append(base_key.asc())
        query = query.order_by(*ordering)
        if self.limit is not None:
            query = query.limit(self.limit)
        if self.offset is not None:
            query = query.offset(self.offset)
        return query, fields, presence, labels

    def _field(self, fields, name):
        try:
            return fields[name]
        except KeyError:
            raise ValueError('%s has no field %r' % (self.name, name))

    def execute(self, connection, mode=None):
        '''Run the query in mode (default: the running context's mode).

        @return: list of dicts holding the record id, Version, ClassName and
            the fields of each record's concrete type.
        '''
        mode = resolve_mode(self.schema, self.name, mode)
        query, fields, presence, labels = self.statement(mode)
        key_name = self.schema.primary_key(
                self.schema.hierarchy_tables(self.name)[0])
        logger.debug('Reading %s in %s' % (self.name, mode))
        return [self._record(row, key_name, presence, labels, mode)
                for row in connection.execute(query).mappings()]

    def _record(self, row, key_name, presence, labels, mode):
        record_id = row[key_name]
        base_name = self.record_type.base.table.name
        class_name = row[labels[(base_name, self.schema.class_name_column)]]
        concrete = concrete_type(self.schema, self.name, class_name,
                record_id)
        required = concrete.tables()
        required_names = set(t.name for t in required)
        for logical, label in presence:
            if logical.name in required_names and row[label] is None:
                msg = '%s %s (%s) has no row in the %s table' % (
                        self.record_type.base.name, record_id, class_name,
                        logical.name)
                if mode.is_archive:
                    raise BrokenHistoryError(msg)
                raise IntegrityError(msg)
        out = {key_name: record_id, VERSION: row[VERSION]}
        for table in required:
            for key in self.schema.data_columns(table):
                out[key] = row[labels[(table.name, key)]]
        return out
