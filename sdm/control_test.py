from sdm import mode as reading
from sdm.control import ReadingModeFilter, RequestFilter, RequestProcessor
from sdm.mode import ReadingMode


class Request(object):

    def __init__(self, params=None, session=None, editor=False):
        self.params = params or {}
        self.session = session
        self.editor = editor


def is_editor(request):
    return request.editor


class TestReadingModeFilter:

    def setup_method(self, name=''):
        self.filter = ReadingModeFilter(('Stage', 'Live'),
                can_view_non_live=is_editor)

    def test_primal_by_default(self):
        assert self.filter.choose_mode(Request()) == \
                ReadingMode.for_stage('Stage')

    def test_stage_param_remembered(self):
        session = {}
        request = Request({'stage': 'Live'}, session, editor=True)
        assert self.filter.choose_mode(request) == ReadingMode.for_stage('Live')
        assert session['readingMode'] == 'Stage.Live'
        # later requests without the parameter use the session
        later = Request({}, session, editor=True)
        assert self.filter.choose_mode(later) == ReadingMode.for_stage('Live')

    def test_not_allowed(self):
        session = {}
        request = Request({'stage': 'Live'}, session)
        assert self.filter.choose_mode(request) == \
                ReadingMode.for_stage('Stage')
        assert 'readingMode' not in session

    def test_primal_needs_no_permission(self):
        request = Request({'stage': 'Stage'}, {})
        assert self.filter.choose_mode(request) == \
                ReadingMode.for_stage('Stage')

    def test_archive_params(self):
        request = Request({'version': '3'}, editor=True)
        assert self.filter.choose_mode(request) == \
                ReadingMode.archive(version=3)
        request = Request({'archiveDate': '2020-01-31T12:00:00'}, editor=True)
        mode = self.filter.choose_mode(request)
        assert mode.is_archive
        assert mode.date.year == 2020

    def test_bad_params_ignored(self):
        request = Request({'stage': 'Draft', 'version': 'x'}, editor=True)
        assert self.filter.choose_mode(request) == \
                ReadingMode.for_stage('Stage')

    def test_invalid_session_value_dropped(self):
        session = {'readingMode': 'garbage'}
        request = Request({}, session, editor=True)
        assert self.filter.choose_mode(request) == \
                ReadingMode.for_stage('Stage')
        assert 'readingMode' not in session

    def test_pre_and_post_request(self):
        request = Request({'stage': 'Live'}, {}, editor=True)
        self.filter.pre_request(request)
        try:
            assert reading.current() == ReadingMode.for_stage('Live')
        finally:
            self.filter.post_request(request, None)
        assert reading.current() is None


class Stopper(RequestFilter):

    def __init__(self, log):
        self.log = log

    def pre_request(self, request):
        self.log.append('stop')
        return False


class Recorder(RequestFilter):

    def __init__(self, log):
        self.log = log

    def pre_request(self, request):
        self.log.append('pre')

    def post_request(self, request, response):
        self.log.append('post')


class TestRequestProcessor:

    def test_runs_in_order(self):
        log = []
        processor = RequestProcessor([Recorder(log), Recorder(log)])
        assert processor.pre_request(Request()) is None
        processor.post_request(Request(), None)
        assert log == ['pre', 'pre', 'post', 'post']

    def test_false_stops_chain(self):
        log = []
        processor = RequestProcessor()
        processor.set_filters([Stopper(log), Recorder(log)])
        assert processor.pre_request(Request()) is False
        assert log == ['stop']
