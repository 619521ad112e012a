# cushion: revisions and views for a lightweight Couch
# Copyright (C) 2011-2016 Novacut Inc
#
# This file is part of `cushion`.
#
# `cushion` is free software: you can redistribute it and/or modify it under
# the terms of the GNU Lesser General Public License as published by the Free
# Software Foundation, either version 3 of the License, or (at your option) any
# later version.
#
# `cushion` is distributed in the hope that it will be useful, but WITHOUT
# ANY WARRANTY; without even the implied warranty of MERCHANTABILITY or FITNESS
# FOR A PARTICULAR PURPOSE.  See the GNU Lesser General Public License for more
# details.
#
# You should have received a copy of the GNU Lesser General Public License along
# with `cushion`.  If not, see <http://www.gnu.org/licenses/>.
#
# Authors:
#   Jason Gerard DeRose <jderose@novacut.com>
#

"""
Revision-checked document CRUD, one at a time or in bulk.

CouchDB uses optimistic concurrency: every document has a revision, every
successful change gives it a new one, and a change made against an old
revision is refused with a 409 `Conflict`.  `Documents` never changes a
`Document` in place; mutations return a `DocOk` with the new revision, and it
is up to you to use it for the next change:

>>> from cushion import Database
>>> docs = Database('people').documents()
>>> ok = docs.create({'name': 'Alice', 'age': 25})  #doctest: +SKIP
>>> alice = docs.get(ok.id)  #doctest: +SKIP
>>> ok = docs.update(alice._replace(data={'name': 'Alice', 'age': 26}))  #doctest: +SKIP
>>> alice = alice._replace(rev=ok.rev)  #doctest: +SKIP

Updating or deleting a `Document` without both an ID and a revision raises
`CannotUpdate` straight away, without any request being made.  For the bulk
methods that check covers the whole batch: if one document is incomplete,
none are sent.  Once CouchDB accepts a batch, each document gets its own
`DocOk` or `DocError`.
"""

from collections.abc import Mapping

from dbase32 import random_id

from . import not_found
from .attachments import AttachmentManager, encode_attachments
from .codec import default_codec
from .model import decode_doc, encode_doc
from .revisions import (
    decode_bulk_rows,
    decode_doc_ok,
    preflight,
    quote_id,
)
from .views import AllDocsQueryBuilder


CREATED = 201
OK = 200


class Documents:
    def __init__(self, db, codec=None):
        self.db = db
        self.codec = (default_codec if codec is None else codec)
        self.attachments = AttachmentManager(db)

    def __repr__(self):
        return '{}({!r})'.format(self.__class__.__name__, self.db)

    def _new_body(self, data, _id):
        body = self.codec.encode(data)
        if not isinstance(body, dict):
            raise TypeError(
                'doc data must encode to a dict; got {!r}'.format(body)
            )
        body = dict(body)
        body['_id'] = _id
        return body

    def create(self, data, _id=None, attachments=None):
        """
        Create a new document from *data*, returning a `DocOk`.

        If *_id* is ``None``, a random ID is generated using `random_id()`.
        *attachments* is a name => `cushion.attachments.Attachment` mapping,
        saved inline with the document.

        Raises `Conflict` if a document with this ID already exists.
        """
        body = self._new_body(data, (random_id() if _id is None else _id))
        if attachments:
            body['_attachments'] = encode_attachments(attachments)
        return decode_doc_ok(self.db.post(body, expect=CREATED))

    def get(self, _id, doc_type=None, attachments=False,
            att_encoding_info=False, conflicts=False, rev=None):
        """
        Return the `Document` with *_id*, its data decoded as *doc_type*.

        With *attachments* the attachment content is included inline;
        otherwise attachments are stubs.  Raises `NotFound` if there is no
        such document, or it has been deleted.
        """
        if not _id:
            raise not_found('GET', self.db.basepath, 'empty doc id')
        options = {}
        if attachments:
            options['attachments'] = True
        if att_encoding_info:
            options['att_encoding_info'] = True
        if conflicts:
            options['conflicts'] = True
        if rev is not None:
            options['rev'] = rev
        obj = self.db.get(quote_id(_id), expect=OK, **options)
        return decode_doc(obj, doc_type, self.codec)

    def update(self, doc):
        """
        Save the changed *doc*, returning a `DocOk` with its new revision.

        Raises `CannotUpdate` if *doc* has no ID or revision, and `Conflict`
        if its revision isn't the current one.
        """
        preflight([doc])
        body = encode_doc(doc, self.codec)
        return decode_doc_ok(
            self.db.put(body, quote_id(doc.id), expect=CREATED)
        )

    def delete(self, doc):
        preflight([doc])
        return decode_doc_ok(
            self.db.delete(quote_id(doc.id), rev=doc.rev, expect=OK)
        )

    def _bulk(self, bodies):
        rows = self.db.post({'docs': bodies}, '_bulk_docs', expect=CREATED)
        return decode_bulk_rows(rows, len(bodies))

    def create_many(self, payloads):
        """
        Create many docs in one request, returning one result per doc.

        *payloads* is either a sequence of doc data, in which case IDs are
        generated, or an ID => data mapping.  Results are in the same order.
        """
        if isinstance(payloads, Mapping):
            items = list(payloads.items())
        else:
            items = [(random_id(), data) for data in payloads]
        if not items:
            return []
        return self._bulk([self._new_body(data, _id) for (_id, data) in items])

    def update_many(self, docs):
        docs = list(docs)
        preflight(docs)
        if not docs:
            return []
        return self._bulk([encode_doc(doc, self.codec) for doc in docs])

    def delete_many(self, docs):
        docs = list(docs)
        preflight(docs)
        if not docs:
            return []
        return self._bulk([
            {'_id': doc.id, '_rev': doc.rev, '_deleted': True}
            for doc in docs
        ])

    def all_docs(self):
        """
        Return an `AllDocsQueryBuilder` for this database.
        """
        return AllDocsQueryBuilder(self.db, codec=self.codec)

    def get_many(self, ids, doc_type=None):
        """
        Fetch the docs with *ids* in one request, in the same order.

        Returns a `ViewResult` whose ``total_rows`` counts every doc in the
        database.  Raises `DecodeError` if any of *ids* doesn't exist; use
        ``all_docs().query_include_docs_allow_missing()`` when that's expected.
        """
        return self.all_docs().query_include_docs(doc_type, ids)

    def attach(self, doc, name, data, content_type='application/octet-stream'):
        return self.attachments.attach(doc, name, data, content_type)

    def delete_attachment(self, doc, name):
        return self.attachments.delete_attachment(doc, name)

    def get_attachment(self, doc, name):
        return self.attachments.get_attachment(doc, name)

    def get_attachment_url(self, doc, name):
        return self.attachments.get_attachment_url(doc, name)
