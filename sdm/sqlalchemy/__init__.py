'''SQLAlchemy staged domain model extension.

For general information about staged domain models see the root sdm package
docstring.

Implementation Notes
====================

Everything is done with SQLAlchemy Core: record types are plain Table objects
registered with a StagedSchema, which adds a copy of each table per
non-primal stage and a '_versions' history table. No mapper or ORM session is
involved, so the rows can be mapped any way you like (or not at all).

Writes go through the VersionWriter, stage to stage copies through the
Publisher, reads through StagedQuery. The Repository puts them together::

    repo = Repository(metadata, schema, 'sqlite:///site.db')
    repo.create_db()
    page_id, version = repo.create('Page', {'Title': 'About'})
    repo.publish('Page', page_id, 'Stage', 'Live')
    repo.read_for_stage('Page', stage='Live')
'''
from .base import StagedSchema, RecordType
from .base import RECORD_ID, VERSION, AUTHOR_ID, LAST_EDITED, CLASS_NAME
from .classname import ClassNameCache
from .history import VersionHistory, VersionMetadata
from .publisher import Publisher
from .query import StagedQuery
from .tools import Repository
from .writer import VersionWriter
