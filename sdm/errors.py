'''Exceptions raised by sdm.

Only ConflictError is ever retried (and only inside the package, by the
version writer and the publisher). Everything else is reported straight to
the caller. Errors coming from SQLAlchemy itself (connectivity, bad SQL) are
not wrapped.
'''


class SDMError(Exception):
    pass


class ConfigurationError(SDMError):
    '''Bad stage or record type setup. Fatal at startup.'''


class NotFoundError(SDMError, LookupError):
    '''The record, stage row or version asked for does not exist.'''


class IntegrityError(SDMError):
    '''The tables of a hierarchy disagree about which rows exist for a record.

    Never patched up: a record with a base row but no subclass row is
    reported, not returned with its subclass fields missing.
    '''


class BrokenHistoryError(IntegrityError, NotFoundError):
    '''A version exists in some hierarchy tables but not in all of them.'''


class ConflictError(SDMError):
    '''A concurrent writer got there first. Retryable.'''


class PublishError(SDMError):
    '''Copying a record between stages failed even after retrying.

    The target stage is left as it was before the publish.
    '''
