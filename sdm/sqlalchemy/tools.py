'''Various useful tools for working with Staged Domain Models.

Primarily organized within a `Repository` object.
'''
import logging
logger = logging.getLogger('sdm')

from sqlalchemy import create_engine, engine_from_config

from sdm import mode as reading
from sdm.errors import NotFoundError
from .history import VersionHistory, get_version, last_version
from .publisher import Publisher
from .query import StagedQuery, load_stage_snapshot, load_version_snapshot
from .query import resolve_mode
from sdm.mode import ReadingMode
from .sqla import configure_engine
from .writer import VersionWriter


class Repository(object):
    '''Everything sdm does, for one schema on one database.

    @param dburi: sqlalchemy dburi. If supplied an engine is created for it,
        otherwise engine must be given.
    @param max_retries: attempts a write gets before ConflictError.
    @param publish_retries: attempts a publish gets before PublishError.
    @param lock_timeout: seconds a transaction may wait for a lock.
    '''

    def __init__(self, metadata, schema, dburi=None, engine=None,
            max_retries=5, publish_retries=3, lock_timeout=None):
        if engine is None:
            if not dburi:
                raise ValueError('Need a dburi or an engine')
            engine = create_engine(dburi)
        self.metadata = metadata
        self.schema = schema
        self.engine = configure_engine(engine, lock_timeout)
        self.writer = VersionWriter(schema, self.engine,
                max_retries=max_retries)
        self.publisher = Publisher(schema, self.engine,
                max_retries=publish_retries)

    @classmethod
    def from_config(cls, metadata, schema, config, prefix='sqlalchemy.'):
        '''Create a repository from a flat (e.g. ini file) configuration.

        The engine is built from the keys starting with prefix (see
        sqlalchemy.engine_from_config); sdm reads sdm.max_retries,
        sdm.publish_retries and sdm.lock_timeout.
        '''
        engine = engine_from_config(config, prefix=prefix)
        options = {}
        for key, convert in [('max_retries', int), ('publish_retries', int),
                ('lock_timeout', float)]:
            value = config.get('sdm.' + key)
            if value not in (None, ''):
                options[key] = convert(value)
        return cls(metadata, schema, engine=engine, **options)

    def create_db(self):
        logger.info('Creating DB tables')
        self.metadata.create_all(self.engine)

    def rebuild_db(self):
        logger.info('Rebuilding DB')
        self.metadata.drop_all(self.engine)
        self.metadata.create_all(self.engine)
        self.schema.classnames.invalidate()

    ## --------------------------------------------------------
    ## Reading

    def read(self, name, filters=None, mode=None, **kwargs):
        '''Read records of type name in mode (default: the current mode).

        Extra keyword arguments are passed on to StagedQuery.
        '''
        query = StagedQuery(self.schema, name, filters, **kwargs)
        with self.engine.connect() as connection:
            return query.execute(connection, mode)

    def read_for_stage(self, name, filters=None, stage=None, **kwargs):
        if stage is None:
            stage = self.schema.primal_stage(name)
        return self.read(name, filters, ReadingMode.for_stage(stage),
                **kwargs)

    def read_for_version(self, name, filters=None, version=None, **kwargs):
        return self.read(name, filters, ReadingMode.archive(version=version),
                **kwargs)

    def read_as_of(self, name, date, filters=None, **kwargs):
        '''Records of type name as they were at date.'''
        return self.read(name, filters, ReadingMode.archive(date=date),
                **kwargs)

    def get(self, name, record_id, mode=None):
        '''Record record_id of type name in mode (default: current mode).

        @raise NotFoundError: not there in that mode.
        '''
        mode = resolve_mode(self.schema, name, mode)
        with self.engine.connect() as connection:
            if mode.is_archive and mode.version is not None:
                return load_version_snapshot(connection, self.schema, name,
                        record_id, mode.version).as_dict()
            if not mode.is_archive:
                return load_stage_snapshot(connection, self.schema, name,
                        record_id, mode.stage).as_dict()
        key = self.schema.primary_key(self.schema.hierarchy_tables(name)[0])
        rows = self.read(name, {key: record_id}, mode)
        if not rows:
            raise NotFoundError('%s %s did not exist at %s' % (name,
                record_id, mode.date))
        return rows[0]

    def get_for_stage(self, name, record_id, stage):
        return self.get(name, record_id, ReadingMode.for_stage(stage))

    def is_on_stage(self, name, record_id, stage):
        try:
            self.get_for_stage(name, record_id, stage)
        except NotFoundError:
            return False
        return True

    def stage_version(self, name, record_id, stage):
        '''Version shown by record_id in stage, None if it is not there.'''
        try:
            return self.get_for_stage(name, record_id, stage)['Version']
        except NotFoundError:
            return None

    def stages_differ(self, name, record_id, stage=None, other=None):
        '''Do two stages (default: the first two) show different versions?'''
        stages = self.schema.stages(name)
        stage = stage or stages[0]
        other = other or stages[1]
        return self.stage_version(name, record_id, stage) != \
                self.stage_version(name, record_id, other)

    def class_names(self, name, include_obsolete=False):
        '''Class names of name's hierarchy, optionally with obsolete ones.'''
        if not include_obsolete:
            return self.schema.classnames.known_types(name)
        table = self.schema.base_type(name).table
        with self.engine.connect() as connection:
            return sorted(self.schema.classnames.all_types_including_obsolete(
                connection, table))

    ## --------------------------------------------------------
    ## Writing

    def _writing_stage(self, name, stage):
        if stage is not None:
            return stage
        mode = resolve_mode(self.schema, name)
        if mode.is_archive:
            raise ValueError('Cannot write %s while reading %s' % (name, mode))
        return mode.stage

    def write_version(self, name, record_id, fields, stage=None,
            author_id=None, class_name=None):
        '''Write fields to record_id in stage (default: the current stage).

        The record keeps its class when name is the hierarchy base or another
        of its ancestors; class_name changes it explicitly.

        @return: the new version number.
        '''
        stage = self._writing_stage(name, stage)
        return self.writer.write(name, record_id, stage, fields, author_id,
                class_name)

    def create(self, name, fields, stage=None, author_id=None):
        '''Create a record of type name.

        @return: (record id, version number).
        '''
        stage = self._writing_stage(name, stage)
        return self.writer.create(name, stage, fields, author_id)

    def publish(self, name, record_id, from_stage=None, to_stage=None):
        '''Copy record_id between stages (default: from the first to the
        second configured stage).'''
        stages = self.schema.stages(name)
        self.publisher.publish(name, record_id, from_stage or stages[0],
                to_stage or stages[1])

    def copy_version_to_stage(self, name, record_id, version, to_stage):
        self.publisher.copy_version_to_stage(name, record_id, version,
                to_stage)

    def delete_from_stage(self, name, record_id, stage):
        return self.publisher.delete_from_stage(name, record_id, stage)

    def rollback(self, name, record_id, version, author_id=None):
        '''Make an old version the current one in the primal stage.

        Writes the fields of version as a new version, so nothing in the
        history is lost.

        @return: the new version number.
        '''
        with self.engine.connect() as connection:
            snapshot = load_version_snapshot(connection, self.schema, name,
                    record_id, version)
        class_name = snapshot.class_name
        if class_name not in self.schema.types:
            class_name = None
        return self.writer.write(name, record_id,
                self.schema.primal_stage(name), snapshot.as_dict(), author_id,
                class_name)

    ## --------------------------------------------------------
    ## History

    def all_versions(self, name, record_id):
        return VersionHistory(self.engine, self.schema, name, record_id)

    def get_version(self, name, record_id, version):
        with self.engine.connect() as connection:
            return get_version(connection, self.schema, name, record_id,
                    version)

    def latest_version(self, name, record_id):
        '''Highest version number of record_id (0 if never written).'''
        with self.engine.connect() as connection:
            return last_version(connection, self.schema, name, record_id)

    def with_mode(self, mode, fn, *args, **kwargs):
        return reading.with_mode(mode, fn, *args, **kwargs)
