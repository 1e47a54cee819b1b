'''Request filters which choose the reading mode for each request.

The web layer is not part of sdm. All a request needs to offer is a
``params`` mapping (query string / form values) and a ``session`` mutable
mapping (or None when there is no session). Wire a RequestProcessor into
your framework's before/after request hooks::

    processor = RequestProcessor([
        ReadingModeFilter(('Stage', 'Live'), can_view_non_live=is_editor),
        ])
    processor.pre_request(request)
    try:
        response = handle(request)
    finally:
        processor.post_request(request, response)
'''
import contextvars
from datetime import datetime

import logging
logger = logging.getLogger('sdm.control')

from sdm import mode as reading
from sdm.mode import ReadingMode


class RequestFilter(object):
    '''Hook run before and after a request.

    Returning False from either method stops the processing chain.
    '''

    def pre_request(self, request):
        return None

    def post_request(self, request, response):
        return None


class RequestProcessor(RequestFilter):
    '''A request filter delegating to a list of nested filters, in order.'''

    def __init__(self, filters=()):
        self.filters = list(filters)

    def set_filters(self, filters):
        self.filters = list(filters)

    def pre_request(self, request):
        for request_filter in self.filters:
            if request_filter.pre_request(request) is False:
                return False
        return None

    def post_request(self, request, response):
        for request_filter in self.filters:
            if request_filter.post_request(request, response) is False:
                return False
        return None


class ReadingModeFilter(RequestFilter):
    '''Pick the reading mode for a request.

    In order of preference: the ``stage``, ``archiveDate`` or ``version``
    request parameter (remembered in the session for the rest of the
    browsing session), the mode remembered in the session, the primal stage.

    Anything other than the primal stage is only granted when
    ``can_view_non_live(request)`` says so; otherwise the request reads the
    primal stage and nothing is remembered.
    '''
    session_key = 'readingMode'

    def __init__(self, stages, can_view_non_live=None):
        self.stages = tuple(stages)
        self.primal = ReadingMode.for_stage(self.stages[0])
        self.can_view_non_live = can_view_non_live or (lambda request: False)
        self._tokens = contextvars.ContextVar('sdm.request_mode_tokens',
                default=())

    def _requested(self, params):
        stage = params.get('stage')
        if stage:
            if stage in self.stages:
                return ReadingMode.for_stage(stage)
            logger.debug('Ignoring unknown stage %r' % stage)
        date = params.get('archiveDate')
        if date:
            try:
                return ReadingMode.archive(date=datetime.fromisoformat(date))
            except ValueError:
                logger.debug('Ignoring invalid archiveDate %r' % date)
        version = params.get('version')
        if version:
            try:
                return ReadingMode.archive(version=int(version))
            except ValueError:
                logger.debug('Ignoring invalid version %r' % version)
        return None

    def choose_mode(self, request):
        params = getattr(request, 'params', None) or {}
        session = getattr(request, 'session', None)
        chosen = self._requested(params)
        remember = chosen is not None
        if chosen is None and session is not None \
                and session.get(self.session_key):
            try:
                chosen = ReadingMode.parse(session[self.session_key])
            except ValueError:
                logger.debug('Dropping invalid session reading mode %r'
                        % session[self.session_key])
                del session[self.session_key]
        if chosen is None:
            return self.primal
        if chosen != self.primal and not self.can_view_non_live(request):
            logger.debug('Request may not view %s, using %s'
                    % (chosen, self.primal))
            return self.primal
        if remember and session is not None:
            session[self.session_key] = str(chosen)
        return chosen

    def pre_request(self, request):
        chosen = self.choose_mode(request)
        token = reading.set_current(chosen)
        self._tokens.set(self._tokens.get() + (token,))
        return None

    def post_request(self, request, response):
        tokens = self._tokens.get()
        if tokens:
            self._tokens.set(tokens[:-1])
            reading.reset(tokens[-1])
        return None
