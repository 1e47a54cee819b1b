import pytest

from sdm.errors import BrokenHistoryError, IntegrityError, NotFoundError
from sdm.sqlalchemy.demo import make_repository, metadata, schema
from sdm.sqlalchemy.history import VersionHistory, VersionMetadata


class TestVersionHistory:

    def setup_method(self, name=''):
        self.repo = make_repository()
        self.page_id, _ = self.repo.create('Page', {'Title': 'v1'},
                author_id=1)
        for number in range(2, 6):
            self.repo.write_version('Page', self.page_id,
                    {'Title': 'v%s' % number}, author_id=number)
        self.other_id, _ = self.repo.create('Page', {'Title': 'other'})

    def test_ordered_in_batches(self):
        history = VersionHistory(self.repo.engine, schema, 'Page',
                self.page_id, batch_size=2)
        versions = list(history)
        assert [meta.version for meta in versions] == [1, 2, 3, 4, 5]
        assert [meta.author_id for meta in versions] == [1, 2, 3, 4, 5]
        first = versions[0]
        assert isinstance(first, VersionMetadata)
        assert first.record_id == self.page_id
        assert first.class_name == 'Page'
        assert first.last_edited <= versions[-1].last_edited

    def test_exact_batch_multiple(self):
        history = VersionHistory(self.repo.engine, schema, 'Page',
                self.page_id, batch_size=5)
        assert history.versions() == [1, 2, 3, 4, 5]

    def test_restartable(self):
        history = self.repo.all_versions('Page', self.page_id)
        assert history.versions() == [1, 2, 3, 4, 5]
        assert history.versions() == [1, 2, 3, 4, 5]
        self.repo.write_version('Page', self.page_id, {'Title': 'v6'})
        assert history.versions() == [1, 2, 3, 4, 5, 6]

    def test_unknown_record(self):
        assert list(self.repo.all_versions('Page', 99)) == []
        assert self.repo.latest_version('Page', 99) == 0

    def test_get_version(self):
        snapshot = self.repo.get_version('Page', self.page_id, 3)
        assert snapshot['Title'] == 'v3'
        assert snapshot['Version'] == 3
        assert snapshot['ID'] == self.page_id
        with pytest.raises(NotFoundError):
            self.repo.get_version('Page', self.page_id, 6)

    def test_archive_reads_do_not_change(self):
        first = self.repo.read_for_version('Page', {'ID': self.page_id}, 2)
        self.repo.write_version('Page', self.page_id, {'Content': 'more'})
        self.repo.publish('Page', self.page_id)
        second = self.repo.read_for_version('Page', {'ID': self.page_id}, 2)
        assert first == second
        assert first[0]['Title'] == 'v2'

    def test_broken_history(self):
        history = metadata.tables['Page_versions']
        with self.repo.engine.begin() as connection:
            connection.execute(history.delete().where(
                history.c.RecordID == self.page_id,
                history.c.Version == 2))
        with pytest.raises(BrokenHistoryError) as info:
            self.repo.get_version('Page', self.page_id, 2)
        assert isinstance(info.value, NotFoundError)
        assert isinstance(info.value, IntegrityError)
        # the other versions are fine
        assert self.repo.get_version('Page', self.page_id, 3)['Title'] == 'v3'
        assert self.repo.all_versions('Page', self.page_id).versions() == [
                1, 2, 3, 4, 5]
