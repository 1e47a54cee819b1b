'''Reading modes and the stage resolver.

The reading mode decides what a read returns: the rows of one stage, or the
snapshot of the records at a fixed version (or point in time). It is held in
a context variable so every thread and every asyncio task has its own; there
is no process-wide "current stage".

Code which needs a particular view regardless of the request (for example
"always read Live here") overrides the mode for a block::

    with reading_mode(ReadingMode.for_stage('Live')):
        ...

or, equivalently, ``with_mode(ReadingMode.for_stage('Live'), fn, arg)``.
Overrides nest and the previous mode is restored however the block exits.
'''
import contextvars
from collections import namedtuple
from contextlib import contextmanager
from datetime import datetime

import logging
logger = logging.getLogger('sdm')

ARCHIVE = 'Archive'

_current = contextvars.ContextVar('sdm.reading_mode', default=None)


class ReadingMode(namedtuple('ReadingMode', ['stage', 'version', 'date'])):
    '''The active stage, or an archive pin to a version number or a date.

    Use the constructors rather than building the tuple by hand::

        ReadingMode.for_stage('Live')
        ReadingMode.archive(version=3)
        ReadingMode.archive(date=datetime(2020, 1, 1))
    '''
    __slots__ = ()

    @classmethod
    def for_stage(cls, stage):
        if not stage or stage == ARCHIVE:
            raise ValueError('Not a stage name: %r' % (stage,))
        return cls(stage, None, None)

    @classmethod
    def archive(cls, version=None, date=None):
        if (version is None) == (date is None):
            raise ValueError('Archive mode needs exactly one of version or date')
        if version is not None and int(version) < 1:
            raise ValueError('Versions start at 1, got %r' % (version,))
        return cls(ARCHIVE, None if version is None else int(version), date)

    @classmethod
    def parse(cls, value):
        '''Parse the string form produced by str(mode).

        'Stage.Live', 'Archive.2020-01-31T12:00:00' or 'Version.4'.
        '''
        kind, sep, arg = (value or '').partition('.')
        if not sep or not arg:
            raise ValueError('Invalid reading mode: %r' % (value,))
        if kind == 'Stage':
            return cls.for_stage(arg)
        if kind == ARCHIVE:
            return cls.archive(date=datetime.fromisoformat(arg))
        if kind == 'Version':
            return cls.archive(version=int(arg))
        raise ValueError('Invalid reading mode: %r' % (value,))

    @property
    def is_archive(self):
        return self.stage == ARCHIVE

    def __str__(self):
        if not self.is_archive:
            return 'Stage.%s' % self.stage
        if self.version is not None:
            return 'Version.%d' % self.version
        return 'Archive.%s' % self.date.isoformat()


def current(default=None):
    '''Reading mode of the running context, or default if none was set.'''
    mode = _current.get()
    if mode is None:
        return default
    return mode


def set_current(mode):
    '''Set the reading mode for the rest of this context.

    :return: a token for reset(). Prefer reading_mode() where the change is
        scoped to a block.
    '''
    if mode is not None and not isinstance(mode, ReadingMode):
        raise TypeError('Expected a ReadingMode, got %r' % (mode,))
    return _current.set(mode)


def reset(token):
    _current.reset(token)


@contextmanager
def reading_mode(mode):
    token = set_current(mode)
    logger.debug('Reading mode set to %s' % (mode,))
    try:
        yield mode
    finally:
        _current.reset(token)


def with_mode(mode, fn, *args, **kwargs):
    '''Call fn under mode and return its result.'''
    with reading_mode(mode):
        return fn(*args, **kwargs)
