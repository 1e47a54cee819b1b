'''Generic sqlalchemy code (not specifically related to sdm).
'''
import random
import time

from sqlalchemy import Column, event, exc, select

import logging
logger = logging.getLogger('sdm')

from sdm.errors import ConflictError

# fragments of driver messages for lock waits that timed out or transactions
# the database gave up on; the same work can simply be tried again
TRANSIENT_MESSAGES = (
        'database is locked',
        'database table is locked',
        'deadlock',
        'could not serialize access',
        'lock timeout',
        'lock wait timeout',
        'canceling statement due to lock timeout',
        )


def copy_column(name, src_table, dest_table, **overrides):
    '''Append a copy of src_table.c[name] to dest_table.

    Type, nullability and defaults are kept. Foreign keys and unique
    constraints are not: the copies hold other stages or history, where
    neither applies.

    @param overrides: keyword arguments for the new Column, e.g.
        primary_key=False.
    '''
    col = src_table.c[name]
    kwargs = dict(
            key=col.key,
            primary_key=col.primary_key,
            nullable=col.nullable,
            autoincrement=False,
            )
    # sequences are not carried over, copies never generate keys
    if getattr(col.default, 'arg', None) is not None:
        kwargs['default'] = col.default.arg
    if getattr(col.server_default, 'arg', None) is not None:
        kwargs['server_default'] = col.server_default.arg
    if getattr(col.onupdate, 'arg', None) is not None:
        kwargs['onupdate'] = col.onupdate.arg
    kwargs.update(overrides)
    dest_table.append_column(Column(col.name, col.type, **kwargs))
    return dest_table.c[name]


def single_primary_key(table):
    pkcols = list(table.primary_key.columns)
    if len(pkcols) != 1:
        msg = 'Table %s must have exactly one primary key column, has %d' % (
                table.name, len(pkcols))
        raise ValueError(msg)
    return pkcols[0]


## --------------------------------------------------------
## Engine set up

def _sqlite_connect(dbapi_connection, connection_record):
    # let sqlalchemy's begin event below issue BEGIN rather than pysqlite
    dbapi_connection.isolation_level = None


def _sqlite_begin(conn):
    # take the write lock up front: two deferred transactions which both read
    # and then both try to write would otherwise fail instead of queueing
    conn.exec_driver_sql('BEGIN IMMEDIATE')


def configure_engine(engine, lock_timeout=None):
    '''Prepare an engine for sdm's transactional writes.

    On SQLite every transaction takes the database write lock when it begins
    and waits at most lock_timeout seconds for it. On PostgreSQL lock waits
    inside a transaction are limited to lock_timeout.
    '''
    dialect = engine.dialect.name
    if dialect == 'sqlite':
        if not event.contains(engine, 'begin', _sqlite_begin):
            event.listen(engine, 'connect', _sqlite_connect)
            event.listen(engine, 'begin', _sqlite_begin)
    if lock_timeout is None:
        return engine
    millis = int(float(lock_timeout) * 1000)

    def set_timeout(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        if dialect == 'sqlite':
            cursor.execute('PRAGMA busy_timeout = %d' % millis)
        elif dialect == 'postgresql':
            cursor.execute('SET lock_timeout = %d' % millis)
        cursor.close()
    event.listen(engine, 'connect', set_timeout)
    return engine


## --------------------------------------------------------
## Transactions

def is_transient(error):
    '''Is error a lock timeout or transaction abort worth retrying?'''
    if isinstance(error, ConflictError):
        return True
    if not isinstance(error, exc.DBAPIError) or error.connection_invalidated:
        return False
    message = str(error.orig).lower()
    return any(fragment in message for fragment in TRANSIENT_MESSAGES)


def transaction_with_retry(engine, work, retries=3, wait=0.01,
        retry_on=is_transient):
    '''Run work(connection) in a transaction, starting over on conflicts.

    Every attempt gets a fresh transaction, so work must do all of its reads
    inside it. Errors for which retry_on(error) is false propagate unchanged.

    @return: whatever work returns.
    @raise ConflictError: when the last of `retries` attempts still
        conflicted.
    '''
    attempt = 0
    while True:
        attempt += 1
        try:
            with engine.begin() as connection:
                return work(connection)
        except (ConflictError, exc.DBAPIError) as error:
            if not retry_on(error):
                raise
            if attempt >= retries:
                msg = 'Giving up after %d attempts: %s' % (attempt, error)
                raise ConflictError(msg) from error
            logger.debug('Retrying (attempt %d) after conflict: %s'
                    % (attempt, error))
            time.sleep(wait * attempt * random.uniform(0.5, 1.5))


def upsert_row(connection, table, key_column, key, values):
    '''Update the row of table whose key_column equals key, or insert it.

    :return: True if a row was inserted.
    '''
    key_col = table.c[key_column]
    if values:
        result = connection.execute(
                table.update().where(key_col == key).values(**values))
        if result.rowcount:
            return False
    else:
        found = connection.execute(
                select(key_col).where(key_col == key)).first()
        if found is not None:
            return False
    row = dict(values)
    row[key_column] = key
    connection.execute(table.insert().values(**row))
    return True
