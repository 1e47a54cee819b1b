'''Reading the version history of a record.

Nothing in here changes a stage: history rows are written once by the
version writer and never touched again.
'''
from collections import namedtuple

from sqlalchemy import select

from .base import AUTHOR_ID, LAST_EDITED, RECORD_ID, VERSION
from .query import load_version_snapshot

VersionMetadata = namedtuple('VersionMetadata',
        ['record_id', 'version', 'class_name', 'last_edited', 'author_id'])


def last_version(connection, schema, name, record_id, for_update=False):
    '''Highest version number of record_id, or 0 if it has none.

    @param for_update: lock the latest history row until the end of the
        transaction (where the database supports it).
    '''
    history = schema.versions_table(schema.base_type(name).table)
    query = select(history.c[VERSION]).where(
            history.c[RECORD_ID] == record_id).order_by(
            history.c[VERSION].desc()).limit(1)
    if for_update:
        query = query.with_for_update()
    latest = connection.execute(query).scalar()
    return latest or 0


def get_version(connection, schema, name, record_id, version):
    '''Full field snapshot of version of record_id, as a dict.'''
    return load_version_snapshot(connection, schema, name, record_id,
            version).as_dict()


class VersionHistory(object):
    '''The versions of one record, oldest first.

    Nothing is read until iteration starts, and rows are fetched in batches
    of batch_size with no connection held between batches. Iterating again
    starts over (and sees versions written in the meantime).
    '''

    def __init__(self, engine, schema, name, record_id, batch_size=100):
        self.engine = engine
        self.schema = schema
        self.name = name
        self.record_id = record_id
        self.batch_size = batch_size
        self.history = schema.versions_table(schema.base_type(name).table)

    def _batch(self, after):
        history = self.history
        query = select(
                history.c[VERSION],
                history.c[self.schema.class_name_column],
                history.c[LAST_EDITED],
                history.c[AUTHOR_ID],
                ).where(
                history.c[RECORD_ID] == self.record_id,
                history.c[VERSION] > after,
                ).order_by(history.c[VERSION]).limit(self.batch_size)
        with self.engine.connect() as connection:
            return connection.execute(query).all()

    def __iter__(self):
        after = 0
        while True:
            batch = self._batch(after)
            for version, class_name, last_edited, author_id in batch:
                yield VersionMetadata(self.record_id, version, class_name,
                        last_edited, author_id)
            if len(batch) < self.batch_size:
                return
            after = batch[-1][0]

    def versions(self):
        return [meta.version for meta in self]

    def __repr__(self):
        return '<VersionHistory %s %s>' % (self.name, self.record_id)
