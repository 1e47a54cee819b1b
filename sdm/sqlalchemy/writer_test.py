import threading

import pytest

from sdm.errors import ConfigurationError, ConflictError
from sdm.sqlalchemy.demo import make_repository, metadata

import logging
logging.basicConfig(level=logging.DEBUG)
logger = logging.getLogger('sdm')


class TestVersionWriter:

    def setup_method(self, name=''):
        self.repo = make_repository()
        self.page_id, self.version = self.repo.create('Page',
                {'Title': 'Home', 'Content': 'Welcome'}, author_id=7)

    def test_create(self):
        assert self.page_id == 1
        assert self.version == 1
        record = self.repo.get_for_stage('Page', self.page_id, 'Stage')
        assert record['Title'] == 'Home'
        assert record['Content'] == 'Welcome'
        assert record['ClassName'] == 'Page'
        assert record['Version'] == 1
        assert record['ShowInMenus'] is True
        other_id, _ = self.repo.create('Page', {'Title': 'Other'})
        assert other_id == 2

    def test_versions_contiguous(self):
        for count in range(3):
            version = self.repo.write_version('Page', self.page_id,
                    {'Content': 'edit %s' % count})
            assert version == count + 2
        assert self.repo.latest_version('Page', self.page_id) == 4
        assert self.repo.all_versions('Page', self.page_id).versions() == [
                1, 2, 3, 4]

    def test_partial_write_keeps_other_fields(self):
        self.repo.write_version('Page', self.page_id, {'Content': 'Changed'})
        record = self.repo.get_for_stage('Page', self.page_id, 'Stage')
        assert record['Title'] == 'Home'
        assert record['Content'] == 'Changed'
        assert record['Version'] == 2
        assert self.repo.get_version('Page', self.page_id, 2) == record

    def test_history_is_copy_of_stage(self):
        self.repo.write_version('Page', self.page_id, {'Title': 'Start'})
        for version in [1, 2]:
            snapshot = self.repo.get_version('Page', self.page_id, version)
            assert snapshot['Version'] == version
        assert self.repo.get_version('Page', self.page_id, 1)['Title'] == \
                'Home'
        assert self.repo.get_version('Page', self.page_id, 2)['Title'] == \
                'Start'

    def test_first_write_to_other_stage(self):
        self.repo.write_version('Page', self.page_id, {'Content': 'Draft'})
        version = self.repo.write_version('Page', self.page_id,
                {'Title': 'Live title'}, stage='Live')
        assert version == 3
        live = self.repo.get_for_stage('Page', self.page_id, 'Live')
        assert live['Title'] == 'Live title'
        # seeded from the latest version
        assert live['Content'] == 'Draft'
        stage = self.repo.get_for_stage('Page', self.page_id, 'Stage')
        assert stage['Title'] == 'Home'
        assert stage['Version'] == 2

    def test_change_class(self):
        redirector = metadata.tables['RedirectorPage']
        self.repo.write_version('RedirectorPage', self.page_id,
                {'ExternalURL': 'http://example.com'})
        record = self.repo.get_for_stage('Page', self.page_id, 'Stage')
        assert record['ClassName'] == 'RedirectorPage'
        assert record['Title'] == 'Home'
        assert record['ExternalURL'] == 'http://example.com'

        self.repo.write_version('Page', self.page_id, {'Title': 'Plain'},
                class_name='Page')
        record = self.repo.get_for_stage('Page', self.page_id, 'Stage')
        assert record['ClassName'] == 'Page'
        assert 'ExternalURL' not in record
        with self.repo.engine.connect() as connection:
            left = connection.execute(redirector.select()).all()
        assert left == []
        # the history still has the redirector version
        assert self.repo.get_version('Page', self.page_id, 2)[
                'ExternalURL'] == 'http://example.com'

    def test_write_through_base_type_keeps_class(self):
        version = self.repo.write_version('SiteTree', self.page_id,
                {'Title': 'Home 2'})
        assert version == 2
        record = self.repo.get_for_stage('SiteTree', self.page_id, 'Stage')
        assert record['ClassName'] == 'Page'
        assert record['Title'] == 'Home 2'
        assert record['Content'] == 'Welcome'
        assert self.repo.get_version('Page', self.page_id, 2)['Content'] == \
                'Welcome'
        # publishing afterwards keeps the subclass row in Live too
        self.repo.publish('SiteTree', self.page_id)
        live = self.repo.get_for_stage('SiteTree', self.page_id, 'Live')
        assert live['ClassName'] == 'Page'
        assert live['Content'] == 'Welcome'

    def test_write_through_ancestor_keeps_subclass(self):
        self.repo.write_version('RedirectorPage', self.page_id,
                {'ExternalURL': 'http://example.com'})
        self.repo.write_version('Page', self.page_id, {'Content': 'Moved'})
        record = self.repo.get_for_stage('Page', self.page_id, 'Stage')
        assert record['ClassName'] == 'RedirectorPage'
        assert record['ExternalURL'] == 'http://example.com'
        assert record['Content'] == 'Moved'

    def test_first_write_to_other_stage_through_base_type(self):
        self.repo.write_version('SiteTree', self.page_id, {'Title': 'Live'},
                stage='Live')
        live = self.repo.get_for_stage('SiteTree', self.page_id, 'Live')
        assert live['ClassName'] == 'Page'
        assert live['Content'] == 'Welcome'

    def test_bad_class_change(self):
        with pytest.raises(ConfigurationError):
            self.repo.write_version('Page', self.page_id, {},
                    class_name='Nope')
        assert self.repo.latest_version('Page', self.page_id) == 1

    def test_bad_writes(self):
        with pytest.raises(ValueError):
            self.repo.write_version('Page', self.page_id, {'Nope': 1})
        with pytest.raises(ValueError):
            self.repo.writer.write('Page', None, 'Stage', {})
        with pytest.raises(ConfigurationError):
            self.repo.write_version('Page', self.page_id, {}, stage='Draft')
        with pytest.raises(ConfigurationError):
            self.repo.write_version('Nope', self.page_id, {})
        assert self.repo.latest_version('Page', self.page_id) == 1

    def test_author(self):
        self.repo.write_version('Page', self.page_id, {}, author_id=8)
        authors = [meta.author_id for meta in
                self.repo.all_versions('Page', self.page_id)]
        assert authors == [7, 8]

    def test_conflict_is_retried(self, monkeypatch):
        writer = self.repo.writer
        real = writer._last_version
        calls = []

        def stale(connection, name, record_id):
            calls.append(record_id)
            latest = real(connection, name, record_id)
            # the first attempt sees the state before another writer
            if len(calls) == 1:
                return latest - 1
            return latest
        monkeypatch.setattr(writer, '_last_version', stale)
        version = self.repo.write_version('Page', self.page_id,
                {'Title': 'Second'})
        assert version == 2
        assert len(calls) == 2
        assert self.repo.all_versions('Page', self.page_id).versions() == [
                1, 2]

    def test_conflict_gives_up(self, monkeypatch):
        writer = self.repo.writer
        real = writer._last_version
        monkeypatch.setattr(writer, '_last_version',
                lambda connection, name, record_id: real(connection, name,
                    record_id) - 1)
        with pytest.raises(ConflictError):
            self.repo.write_version('Page', self.page_id, {'Title': 'Lost'})
        # nothing of the failed write is left behind
        record = self.repo.get_for_stage('Page', self.page_id, 'Stage')
        assert record['Title'] == 'Home'
        assert record['Version'] == 1
        assert self.repo.latest_version('Page', self.page_id) == 1


class TestConcurrentWriters:

    threads = 4
    writes = 5

    def test_versions_stay_contiguous(self, tmp_path):
        dburi = 'sqlite:///%s' % (tmp_path / 'concurrent.db')
        repo = make_repository(dburi, lock_timeout=30, max_retries=20)
        page_id, _ = repo.create('Page', {'Title': 'Shared'})
        errors = []

        def worker(number):
            try:
                for count in range(self.writes):
                    repo.write_version('Page', page_id,
                            {'Content': '%s-%s' % (number, count)})
            except Exception as e:
                errors.append(e)

        workers = [threading.Thread(target=worker, args=(n,))
                for n in range(self.threads)]
        for thread in workers:
            thread.start()
        for thread in workers:
            thread.join(60)
        assert errors == []
        total = 1 + self.threads * self.writes
        assert repo.latest_version('Page', page_id) == total
        assert repo.all_versions('Page', page_id).versions() == list(
                range(1, total + 1))
        record = repo.get_for_stage('Page', page_id, 'Stage')
        assert record['Version'] == total
        assert record == repo.get_version('Page', page_id, total)
        repo.engine.dispose()
