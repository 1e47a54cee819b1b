'''
About
=====

Staged Domain Model (sdm) is a package which lets a record of your domain
model live in several 'stages' at once (for example a 'Stage' draft and a
'Live' published copy) while keeping a complete, numbered history of every
write made to it.

At present the package is provided as an extension to SQLAlchemy (Core).


Copyright and License
=====================

Licensed under the MIT license:

  <http://www.opensource.org/licenses/mit-license.php>


Stages, Versions and Reading Modes
==================================

For each record type you configure an ordered list of stages. The first one
is the 'primal' stage: it lives in the table you defined yourself. Every other
stage gets a copy of that table with the stage name as a suffix, and every
table also gets a '_versions' copy which holds the history::

    SiteTree            # primal stage ('Stage')
    SiteTree_Live       # 'Live' stage
    SiteTree_versions   # one row per version of every record

Record types may inherit from each other, each subclass adding its own table
joined to its parent on the record id (the base table carries a 'ClassName'
column naming the concrete type). Every physical table in such a hierarchy is
suffixed in exactly the same way.

Writing to a stage always creates a new version. Publishing copies a record
from one stage to another without creating one. Reading is governed by the
'reading mode': either a stage, or 'Archive' pinned to a version number or a
point in time. The reading mode belongs to the current request (thread or
asyncio task) and can be overridden temporarily::

    repo = Repository(metadata, schema, 'sqlite://')
    record_id, version = repo.create('Page', {'Title': 'About us'})
    repo.publish('Page', record_id, 'Stage', 'Live')

    with sdm.mode.reading_mode(ReadingMode.for_stage('Live')):
        live_pages = repo.read('Page')

    # what did it look like at version 1?
    old = repo.get_version('Page', record_id, 1)


Code in Action
--------------

To see some real code in action take a look at::

    sdm/sqlalchemy/demo.py
    sdm/sqlalchemy/tools_test.py
'''
__version__ = '0.1'
__description__ = 'Staged, versioned records for SQLAlchemy.'
