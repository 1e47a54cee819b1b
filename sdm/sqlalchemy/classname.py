'''Class names of a record hierarchy, including obsolete ones.

Rows written by older code may name types which no longer exist. The values
actually found in a ClassName column are merged with the known types and
cached per (table, column) until invalidate() is called. The schema
invalidates whenever a record type is added; call it yourself after
reloading your types some other way.
'''
import threading

import sqlalchemy
from sqlalchemy import exc, select

import logging
logger = logging.getLogger('sdm')


class ClassNameCache(object):

    def __init__(self, schema):
        self.schema = schema
        self._lock = threading.Lock()
        # replaced wholesale, never mutated, so readers need no lock
        self._cache = {}
        self._generation = 0

    def known_types(self, name):
        '''Concrete types of name's hierarchy, in registration order.'''
        return self.schema.known_types(name)

    def default_class_name(self, name):
        '''Class name given to rows of name's hierarchy created without one.

        The default configured on the hierarchy base if that type exists,
        otherwise the first known type.
        '''
        configured = self.schema.configured_default_class_name(name)
        if configured and configured in self.schema.types:
            return configured
        known = self.known_types(name)
        if known:
            return known[0]
        return None

    def all_types_including_obsolete(self, connection, table, column=None):
        '''Known types of table's hierarchy plus every value in the column.

        table may be the logical table, a stage table or a history table
        (or its name). If the column does not exist in the database only the
        known types are returned.

        @return: frozenset of class names.
        '''
        column = column or self.schema.class_name_column
        table_name = getattr(table, 'name', table)
        key = (table_name, column)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        generation = self._generation
        record_type = self.schema.record_type_for_table(table_name)
        names = set(self.known_types(record_type.name))
        inspector = sqlalchemy.inspect(connection)
        try:
            existing = [c['name'] for c in inspector.get_columns(table_name)]
        except exc.NoSuchTableError:
            existing = []
        if column in existing:
            # lightweight table: the column may be gone from our metadata
            source = sqlalchemy.table(table_name, sqlalchemy.column(column))
            col = source.c[column]
            query = select(col).group_by(col)
            for (value,) in connection.execute(query):
                if value is not None:
                    names.add(value)
        names = frozenset(names)
        obsolete = names.difference(self.known_types(record_type.name))
        if obsolete:
            logger.debug('Obsolete class names in %s.%s: %s' % (table_name,
                column, ', '.join(sorted(obsolete))))

        with self._lock:
            # an invalidation while we were reading makes this result stale
            if generation == self._generation:
                cache = dict(self._cache)
                cache[key] = names
                self._cache = cache
        return names

    def is_obsolete(self, name, class_name):
        '''Is class_name no longer a type of name's hierarchy?'''
        base = self.schema.base_type(name).name
        return class_name not in self.schema.subclasses(base)

    def invalidate(self):
        with self._lock:
            self._generation += 1
            self._cache = {}
