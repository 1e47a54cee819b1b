'''Copying records between stages.

A publish copies the complete row set of a record (every table of its
hierarchy) from one stage, or from one version in the history, to another
stage. It does not create a version: the target stage simply ends up showing
a version which already exists.

Each operation is one transaction. Lock timeouts and other transient
failures are retried; if they keep happening a PublishError is raised and
the target stage is left exactly as it was.
'''
import logging
logger = logging.getLogger('sdm')

from sdm.errors import ConfigurationError, ConflictError, PublishError
from .base import VERSION
from .query import load_stage_snapshot, load_version_snapshot
from .sqla import transaction_with_retry, upsert_row


class Publisher(object):

    def __init__(self, schema, engine, max_retries=3, retry_wait=0.05):
        self.schema = schema
        self.engine = engine
        self.max_retries = max_retries
        self.retry_wait = retry_wait

    def _run(self, description, work):
        try:
            return transaction_with_retry(self.engine, work,
                    retries=self.max_retries, wait=self.retry_wait)
        except ConflictError as e:
            raise PublishError('%s failed: %s' % (description, e)) from e

    def _check_stage(self, name, stage):
        if stage not in self.schema.stages(name):
            raise ConfigurationError('%s has no stage %r' % (name, stage))

    def _copy_snapshot(self, connection, snapshot, name, to_stage):
        base_type = self.schema.base_type(name)
        base_table = base_type.table
        for table, values in snapshot.rows.items():
            values = dict(values)
            if table is base_table:
                values[VERSION] = snapshot.version
            physical = self.schema.stage_table(table, to_stage)
            upsert_row(connection, physical, self.schema.primary_key(table),
                    snapshot.record_id, values)
        # rows left over from a class the record no longer has
        for record_type in base_type.descendants():
            table = record_type.table
            if table is None or table in snapshot.rows:
                continue
            physical = self.schema.stage_table(table, to_stage)
            key = self.schema.primary_key(table)
            connection.execute(physical.delete().where(
                physical.c[key] == snapshot.record_id))

    def publish(self, name, record_id, from_stage, to_stage):
        '''Copy record_id's rows in from_stage over its rows in to_stage.

        @raise NotFoundError: the record is not in from_stage.
        @raise IntegrityError: its rows in from_stage are incomplete.
        @raise PublishError: the copy kept failing.
        '''
        self._check_stage(name, from_stage)
        self._check_stage(name, to_stage)
        if from_stage == to_stage:
            logger.debug('Not publishing %s %s from %s onto itself' % (name,
                record_id, from_stage))
            return

        def work(connection):
            snapshot = load_stage_snapshot(connection, self.schema, name,
                    record_id, from_stage)
            self._copy_snapshot(connection, snapshot, name, to_stage)
            return snapshot

        snapshot = self._run('Publishing %s %s' % (name, record_id), work)
        logger.debug('Published version %s of %s %s from %s to %s' % (
            snapshot.version, name, record_id, from_stage, to_stage))

    def copy_version_to_stage(self, name, record_id, version, to_stage):
        '''Copy a version from the history into to_stage.

        @raise NotFoundError: there is no such version.
        @raise BrokenHistoryError: the version is missing from a table.
        '''
        self._check_stage(name, to_stage)

        def work(connection):
            snapshot = load_version_snapshot(connection, self.schema, name,
                    record_id, version)
            self._copy_snapshot(connection, snapshot, name, to_stage)

        self._run('Copying version %s of %s %s' % (version, name, record_id),
                work)
        logger.debug('Copied version %s of %s %s to %s' % (version, name,
            record_id, to_stage))

    def delete_from_stage(self, name, record_id, stage):
        '''Remove record_id from stage. Its history is kept.

        @return: True if the record was in stage.
        '''
        self._check_stage(name, stage)
        base_type = self.schema.base_type(name)
        # most derived first
        tables = [t.table for t in base_type.descendants()
                if t.table is not None]
        tables.reverse()

        def work(connection):
            deleted = False
            for table in tables:
                physical = self.schema.stage_table(table, stage)
                key = self.schema.primary_key(table)
                result = connection.execute(physical.delete().where(
                    physical.c[key] == record_id))
                if table is base_type.table:
                    deleted = result.rowcount > 0
            return deleted

        deleted = self._run('Deleting %s %s from %s' % (name, record_id,
            stage), work)
        logger.debug('Deleted %s %s from %s: %s' % (name, record_id, stage,
            deleted))
        return deleted
