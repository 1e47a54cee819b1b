'''A small site tree, used by the tests and as an example.

SiteTree is the hierarchy base, staged in Stage and Live. Page adds content,
RedirectorPage adds redirect settings and ErrorPage is a Page with no columns
of its own.
'''
from sqlalchemy import Boolean, Column, ForeignKey, Integer, MetaData
from sqlalchemy import String, Table, UnicodeText

from sdm.sqlalchemy.base import StagedSchema
from sdm.sqlalchemy.tools import Repository


def make_schema():
    '''Fresh metadata and schema for the demo types.

    @return: (metadata, schema).
    '''
    metadata = MetaData()

    site_tree_table = Table('SiteTree', metadata,
            Column('ID', Integer, primary_key=True),
            Column('Title', String(255)),
            Column('URLSegment', String(255)),
            Column('ShowInMenus', Boolean, default=True),
            )

    page_table = Table('Page', metadata,
            Column('ID', Integer, ForeignKey('SiteTree.ID'), primary_key=True),
            Column('Content', UnicodeText),
            )

    redirector_page_table = Table('RedirectorPage', metadata,
            Column('ID', Integer, ForeignKey('Page.ID'), primary_key=True),
            Column('RedirectionType', String(20), default='Internal'),
            Column('ExternalURL', String(2083)),
            )

    schema = StagedSchema(metadata)
    schema.add_type('SiteTree', site_tree_table, stages=('Stage', 'Live'),
            non_live_permissions=('CMS_ACCESS', 'VIEW_DRAFT_CONTENT'),
            default_class_name='Page')
    schema.add_type('Page', page_table, parent='SiteTree')
    schema.add_type('RedirectorPage', redirector_page_table, parent='Page')
    schema.add_type('ErrorPage', parent='Page')
    return metadata, schema


metadata, schema = make_schema()


def make_repository(dburi='sqlite://', **kwargs):
    '''Repository for the demo schema on an empty database.'''
    repo = Repository(metadata, schema, dburi, **kwargs)
    repo.rebuild_db()
    return repo
