'''Writing records to a stage, one new version per write.

In essence this is copy on write: the stage rows are updated in place and
the result is copied into the '_versions' tables under the next version
number of the record, all in one transaction.

Version numbers are allocated by reading the latest one and adding one. Two
writers of the same record may read the same number; the unique
(RecordID, Version) constraint on the history tables stops the second one,
whose transaction is then rolled back and run again from scratch.

A write through one of the record's own types (its class or any ancestor of
it, the hierarchy base included) keeps the record's class. A write through
any other type of the hierarchy makes the record that type; pass class_name
to change it to one of its ancestors.
'''
from datetime import datetime

from sqlalchemy import exc, func, select

import logging
logger = logging.getLogger('sdm')

from sdm.errors import ConfigurationError, ConflictError, NotFoundError
from .base import AUTHOR_ID, LAST_EDITED, RECORD_ID, VERSION
from .history import last_version
from .query import load_stage_snapshot, load_version_snapshot
from .sqla import transaction_with_retry, upsert_row


class VersionWriter(object):

    def __init__(self, schema, engine, max_retries=5, retry_wait=0.01):
        self.schema = schema
        self.engine = engine
        self.max_retries = max_retries
        self.retry_wait = retry_wait

    def write(self, name, record_id, stage, fields, author_id=None,
            class_name=None):
        '''Write fields of record record_id to stage.

        fields may be partial: missing fields keep their value in the stage
        or, on the first write to a stage, the value of the latest version.

        @param class_name: type the record becomes. By default it keeps its
            class unless name is not one of its types.
        @return: the new version number.
        '''
        if record_id is None:
            raise ValueError('Use create() for new records')
        return self._run(name, record_id, stage, fields, author_id,
                class_name)[1]

    def create(self, name, stage, fields, author_id=None):
        '''Write a new record to stage.

        @return: (record id, version number).
        '''
        return self._run(name, None, stage, fields, author_id)

    def _run(self, name, record_id, stage, fields, author_id,
            class_name=None):
        record_type = self.schema.record_type(name)
        target = None
        if class_name is not None:
            target = self.schema.record_type(class_name)
            if target.base is not record_type.base:
                raise ConfigurationError('%s is not a type of %s' % (
                    class_name, record_type.base.name))
            if target.abstract:
                raise ConfigurationError('%s is abstract' % class_name)
        if stage not in self.schema.stages(name):
            raise ConfigurationError('%s has no stage %r' % (name, stage))
        by_table = self.schema.split_fields(class_name or name, fields)

        def work(connection):
            return self._write(connection, record_type, record_id, stage,
                    by_table, author_id, target)
        record_id, version = transaction_with_retry(self.engine, work,
                retries=self.max_retries, wait=self.retry_wait)
        logger.debug('Wrote version %s of %s %s to %s' % (version, name,
            record_id, stage))
        return record_id, version

    def _last_version(self, connection, name, record_id):
        return last_version(connection, self.schema, name, record_id,
                for_update=True)

    def _new_record_id(self, connection, base_type):
        base_table = base_type.table
        key = self.schema.primary_key(base_table)
        queries = []
        for stage in self.schema.stages(base_type.name):
            physical = self.schema.stage_table(base_table, stage)
            queries.append(select(func.max(physical.c[key])))
        history = self.schema.versions_table(base_table)
        queries.append(select(func.max(history.c[RECORD_ID])))
        return max(connection.execute(q).scalar() or 0 for q in queries) + 1

    def _concrete_type(self, record_type, previous, target=None):
        '''Type the record is left as by a write through record_type.'''
        if target is not None:
            return target
        if previous is not None:
            existing = self.schema.types.get(previous.class_name)
            if existing is not None and existing.is_a(record_type.name):
                return existing
        return record_type

    def _write(self, connection, record_type, record_id, stage, by_table,
            author_id, target=None):
        schema = self.schema
        name = record_type.name
        base_table = record_type.base.table
        is_new = record_id is None
        if is_new:
            record_id = self._new_record_id(connection, record_type.base)
        version = self._last_version(connection, name, record_id) + 1

        previous = None
        try:
            current = previous = load_stage_snapshot(connection, schema,
                    name, record_id, stage)
        except NotFoundError:
            # first write to this stage: start from the latest version
            current = None
            if version > 1:
                previous = load_version_snapshot(connection, schema, name,
                        record_id, version - 1)
        seed = previous.rows if previous is not None else {}

        concrete = self._concrete_type(record_type, previous, target)
        if concrete.abstract:
            raise ConfigurationError('%s is abstract' % concrete.name)
        tables = concrete.tables()
        for table in tables:
            values = dict(by_table.get(table, {}))
            if table is base_table:
                values[schema.class_name_column] = concrete.name
                values[VERSION] = version
            if current is None or table not in current.rows:
                merged = dict(seed.get(table, {}))
                merged.update(values)
                values = merged
            physical = schema.stage_table(table, stage)
            key = schema.primary_key(table)
            try:
                upsert_row(connection, physical, key, record_id, values)
            except exc.IntegrityError as e:
                if is_new and table is base_table:
                    msg = 'Record id %s of %s was taken by another writer' % (
                            record_id, record_type.base.name)
                    raise ConflictError(msg) from e
                raise

        if current is not None:
            # the record changed class: drop rows of tables it no longer has
            for table in set(current.rows).difference(tables):
                physical = schema.stage_table(table, stage)
                key = schema.primary_key(table)
                connection.execute(physical.delete().where(
                    physical.c[key] == record_id))

        written = load_stage_snapshot(connection, schema, concrete.name,
                record_id, stage)
        now = datetime.now()
        for table in tables:
            history = schema.versions_table(table)
            row = dict(written.rows[table])
            row[RECORD_ID] = record_id
            row[VERSION] = version
            if table is base_table:
                row[AUTHOR_ID] = author_id
                row[LAST_EDITED] = now
            try:
                connection.execute(history.insert().values(**row))
            except exc.IntegrityError as e:
                msg = 'Version %s of %s %s was taken by another writer' % (
                        version, name, record_id)
                raise ConflictError(msg) from e
        return record_id, version
