'''Record types, their tables and the per-stage / history copies of them.

A StagedSchema is built once, at configuration time, and handed to every
other part of sdm. It is the only place which knows how a table is named in
a given stage::

    schema = StagedSchema(metadata)
    schema.add_type('SiteTree', site_tree_table, stages=('Stage', 'Live'))
    schema.add_type('Page', page_table, parent='SiteTree')

    schema.stage_table(page_table, 'Stage')     # page_table itself
    schema.stage_table(page_table, 'Live')      # Table('Page_Live')
    schema.versions_table(page_table)           # Table('Page_versions')

Adding a type creates the stage and history tables in the metadata straight
away, so metadata.create_all() creates the whole lot.
'''
from sqlalchemy import Column, DateTime, Integer, String, Table
from sqlalchemy import UniqueConstraint

import logging
logger = logging.getLogger('sdm')

from sdm.errors import ConfigurationError
from sdm.mode import ARCHIVE, ReadingMode
from .classname import ClassNameCache
from .sqla import copy_column, single_primary_key

RECORD_ID = 'RecordID'
VERSION = 'Version'
AUTHOR_ID = 'AuthorID'
LAST_EDITED = 'LastEdited'
CLASS_NAME = 'ClassName'
VERSIONS = 'versions'
DEFAULT_STAGES = ('Stage', 'Live')


class RecordType(object):
    '''One type of a record hierarchy.

    table is None for a subtype which adds no columns of its own.
    '''

    def __init__(self, name, table=None, parent=None, abstract=False):
        self.name = name
        self.table = table
        self.parent = parent
        self.abstract = abstract
        self.children = []

    @property
    def base(self):
        return self.ancestry()[0]

    def ancestry(self):
        '''Types from the hierarchy base down to this one.'''
        out = []
        record_type = self
        while record_type is not None:
            out.insert(0, record_type)
            record_type = record_type.parent
        return out

    def descendants(self):
        '''This type and every type below it, depth first.'''
        out = [self]
        for child in self.children:
            out.extend(child.descendants())
        return out

    def tables(self):
        return [t.table for t in self.ancestry() if t.table is not None]

    def is_a(self, name):
        return any(t.name == name for t in self.ancestry())

    def __repr__(self):
        return '<RecordType %s>' % self.name


class StagedSchema(object):

    def __init__(self, metadata, class_name_column=CLASS_NAME):
        self.metadata = metadata
        self.class_name_column = class_name_column
        self.types = {}
        self._bases = {}
        self._table_types = {}
        self._stage_tables = {}
        self._versions_tables = {}
        # physical table name -> (logical table, stage name or VERSIONS)
        self._physical = {}
        self.classnames = ClassNameCache(self)

    ## --------------------------------------------------------
    ## Configuration

    def add_type(self, name, table=None, parent=None, stages=None,
            non_live_permissions=None, abstract=False,
            default_class_name=None):
        '''Register a record type.

        Stages, non-live permissions and the default class name belong to the
        hierarchy base: a subtype may only repeat the base's stages.

        @param non_live_permissions: permission codes a visitor needs to see
            any stage other than the primal one. sdm does not check them
            itself, see non_live_permissions().
        @return: the new RecordType.
        '''
        if name in self.types:
            raise ConfigurationError('Record type %s already registered' % name)
        if parent is None:
            if table is None:
                raise ConfigurationError('Base type %s needs a table' % name)
            stages = self._check_stages(name, stages or DEFAULT_STAGES)
            parent_type = None
        else:
            parent_type = self.record_type(parent)
            base = parent_type.base
            base_stages = self._bases[base.name]['stages']
            if stages is not None and tuple(stages) != base_stages:
                msg = ('Stages of %s must be configured on its hierarchy base'
                        ' %s' % (name, base.name))
                raise ConfigurationError(msg)
            if non_live_permissions is not None or default_class_name:
                msg = ('Permissions and default class of %s must be'
                        ' configured on its hierarchy base %s'
                        % (name, base.name))
                raise ConfigurationError(msg)
            stages = base_stages
        if table is not None:
            self._check_table(name, table, parent_type, stages)

        record_type = RecordType(name, table, parent_type, abstract)
        if parent_type is None:
            self._bases[name] = dict(
                    stages=stages,
                    non_live_permissions=tuple(non_live_permissions or ()),
                    default_class_name=default_class_name,
                    )
            self._prepare_base_table(name, table)
        else:
            parent_type.children.append(record_type)
        self.types[name] = record_type
        if table is not None:
            self._table_types[table.name] = record_type
            self._make_stage_tables(table, stages, parent_type is None)
        logger.debug('Registered %s (stages %s)' % (name, ', '.join(stages)))
        # the set of known types changed
        self.classnames.invalidate()
        return record_type

    def _check_stages(self, name, stages):
        stages = tuple(stages)
        if len(stages) < 2:
            msg = '%s needs at least 2 stages, got %r' % (name, stages)
            raise ConfigurationError(msg)
        if len(set(stages)) != len(stages):
            raise ConfigurationError('Duplicate stage names for %s' % name)
        for stage in stages:
            if not stage or stage in (ARCHIVE, VERSIONS) or '.' in stage:
                raise ConfigurationError('Invalid stage name %r' % (stage,))
        return stages

    def _check_table(self, name, table, parent_type, stages):
        if table.metadata is not self.metadata:
            raise ConfigurationError('Table %s is not in this schema\'s '
                    'metadata' % table.name)
        if table.name in self._table_types:
            raise ConfigurationError('Table %s already belongs to %s'
                    % (table.name, self._table_types[table.name].name))
        try:
            pk = single_primary_key(table)
        except ValueError as e:
            raise ConfigurationError(str(e))
        reserved = [RECORD_ID, AUTHOR_ID, LAST_EDITED, VERSION]
        if parent_type is not None:
            reserved.append(self.class_name_column)
        taken = set()
        if parent_type is not None:
            for ancestor in parent_type.tables():
                taken.update(ancestor.c.keys())
        for col in table.c:
            if col.primary_key:
                continue
            if col.key in reserved or col.key == 'ID':
                msg = 'Column %s.%s uses a reserved name' % (table.name,
                        col.key)
                raise ConfigurationError(msg)
            if col.key in taken:
                msg = 'Column %s.%s shadows a column of an ancestor of %s' % (
                        table.name, col.key, name)
                raise ConfigurationError(msg)
        if pk.key in reserved or pk.key == self.class_name_column:
            raise ConfigurationError('Primary key %s.%s uses a reserved name'
                    % (table.name, pk.key))
        names = ['%s_%s' % (table.name, s) for s in stages[1:]]
        names.append('%s_%s' % (table.name, VERSIONS))
        for physical in names:
            if physical in self.metadata.tables:
                raise ConfigurationError('Table %s already exists' % physical)

    def _prepare_base_table(self, base_name, table):
        '''Add the class name and version columns to a hierarchy base table.'''
        if self.class_name_column not in table.c:
            table.append_column(Column(self.class_name_column, String(255),
                    default=lambda: self.classnames.default_class_name(
                        base_name)))
        table.append_column(Column(VERSION, Integer))

    def _make_stage_tables(self, table, stages, is_base):
        self._physical[table.name] = (table, stages[0])
        for stage in stages[1:]:
            staged = Table('%s_%s' % (table.name, stage), self.metadata)
            for key in table.c.keys():
                copy_column(key, table, staged)
            self._stage_tables[(table.name, stage)] = staged
            self._physical[staged.name] = (table, stage)

        versions_name = '%s_%s' % (table.name, VERSIONS)
        versions = Table(versions_name, self.metadata,
                Column('ID', Integer, primary_key=True),
                Column(RECORD_ID, Integer, nullable=False),
                Column(VERSION, Integer, nullable=False),
                )
        if is_base:
            versions.append_column(Column(AUTHOR_ID, Integer))
            versions.append_column(Column(LAST_EDITED, DateTime))
        for key in self.data_columns(table):
            copy_column(key, table, versions, primary_key=False,
                    nullable=True)
        # one row per record and version: a second writer allocating the same
        # version number fails here
        versions.append_constraint(UniqueConstraint(RECORD_ID, VERSION,
                name='%s_%s_%s' % (versions_name, RECORD_ID, VERSION)))
        self._versions_tables[table.name] = versions
        self._physical[versions_name] = (table, VERSIONS)

    ## --------------------------------------------------------
    ## Lookups

    def record_type(self, name):
        try:
            return self.types[name]
        except KeyError:
            raise ConfigurationError('Unknown record type %r' % (name,))

    def base_type(self, name):
        return self.record_type(name).base

    def hierarchy_tables(self, name):
        '''Tables storing the columns of type name, base first.'''
        return self.record_type(name).tables()

    def descendant_tables(self, name):
        '''Tables added by the subtypes of name (not its own or ancestors').'''
        return [t.table for t in self.record_type(name).descendants()[1:]
                if t.table is not None]

    def subclasses(self, name):
        '''Names of type name and all of its subtypes.'''
        return [t.name for t in self.record_type(name).descendants()]

    def known_types(self, name):
        '''Names of the concrete (non-abstract) types of name's hierarchy.'''
        base = self.base_type(name)
        return [t.name for t in base.descendants() if not t.abstract]

    def stages(self, name):
        return self._bases[self.base_type(name).name]['stages']

    def primal_stage(self, name):
        return self.stages(name)[0]

    def non_live_permissions(self, name):
        return self._bases[self.base_type(name).name]['non_live_permissions']

    def configured_default_class_name(self, name):
        return self._bases[self.base_type(name).name]['default_class_name']

    def record_type_for_table(self, table):
        '''Record type owning table (logical, stage or history table).'''
        return self._table_types[self.logical_table(table).name]

    def logical_table(self, table):
        name = getattr(table, 'name', table)
        try:
            return self._physical[name][0]
        except KeyError:
            raise ConfigurationError('Table %r is not staged' % (name,))

    def primary_key(self, table):
        return single_primary_key(self.logical_table(table)).key

    def data_columns(self, table):
        '''Keys of the columns of table which get versioned.'''
        return [col.key for col in table.c
                if not col.primary_key and col.key != VERSION]

    def resolve_stage(self, name, mode, strict=True):
        '''Reading mode a read of type name should use under mode.

        No mode at all means the primal stage. A stage type name does not
        have is a ConfigurationError if strict, otherwise the primal stage.
        '''
        primal = ReadingMode.for_stage(self.primal_stage(name))
        if mode is None:
            return primal
        if mode.is_archive or mode.stage in self.stages(name):
            return mode
        if strict:
            raise ConfigurationError('%s has no stage %r' % (name, mode.stage))
        logger.debug('%s has no stage %s, reading %s' % (name, mode.stage,
            primal.stage))
        return primal

    def stage_table(self, table, stage):
        '''Physical table holding table's rows in stage.

        The primal stage is the logical table itself.
        '''
        logical = self.logical_table(table)
        stages = self.stages(self._table_types[logical.name].name)
        if stage not in stages:
            msg = 'Table %s has no stage %r (stages: %s)' % (logical.name,
                    stage, ', '.join(stages))
            raise ConfigurationError(msg)
        if stage == stages[0]:
            return logical
        return self._stage_tables[(logical.name, stage)]

    def versions_table(self, table):
        return self._versions_tables[self.logical_table(table).name]

    def split_fields(self, name, fields):
        '''Group field values by the table of name's hierarchy storing them.

        The primary key, class name and version keys are system columns and
        are ignored.

        @return: dict mapping logical tables to dicts of column values.
        '''
        tables = self.hierarchy_tables(name)
        system = set([self.primary_key(tables[0]), self.class_name_column,
            VERSION])
        owners = {}
        for table in tables:
            for key in self.data_columns(table):
                owners[key] = table
        by_table = {}
        for key, value in fields.items():
            if key in system:
                continue
            if key not in owners:
                raise ValueError('%s has no field %r' % (name, key))
            by_table.setdefault(owners[key], {})[key] = value
        return by_table
