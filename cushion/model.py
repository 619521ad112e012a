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
Documents, rows, and the paged results views and ``_all_docs`` return.

A map query gives you a `ViewResult`::

    {"offset": 0, "total_rows": 3, "rows": [{"id": .., "key": .., "value": ..}]}

where ``total_rows`` counts every row in the view, no matter which keys you
asked for.  With ``include_docs`` each row also has a ``doc``.  A reduce query
gives you a `ReducedResult`, which only has ``rows``.

When you fetch by a list of keys and some of them may not exist, each row is
either `Found` or `Missing`, and there is always exactly one row per key you
asked for, in the order you asked for them.
"""

from collections import namedtuple

from . import DecodeError
from .attachments import decode_attachments, encode_attachments
from .codec import default_codec


class Document(namedtuple('Document', 'id rev data attachments conflicts')):
    """
    A CouchDB document: your *data* plus the metadata CouchDB keeps with it.

    >>> doc = Document('foo', '1-abc', {'hello': 'world'})
    >>> doc.attachments
    {}
    >>> doc._replace(rev='2-def').rev
    '2-def'

    """

    __slots__ = ()

    def __new__(cls, id, rev=None, data=None, attachments=None, conflicts=()):
        if attachments is None:
            attachments = {}
        return super().__new__(cls, id, rev, data, attachments, tuple(conflicts))


Row = namedtuple('Row', 'id key value')
DocsRow = namedtuple('DocsRow', 'id key value doc')
ReducedRow = namedtuple('ReducedRow', 'key value')


class Found(namedtuple('Found', 'row')):
    __slots__ = ()
    found = True


class Missing(namedtuple('Missing', 'key error')):
    __slots__ = ()
    found = False


def _found_rows(rows):
    for row in rows:
        if isinstance(row, Found):
            yield row.row
        elif not isinstance(row, Missing):
            yield row


class ViewResult(namedtuple('ViewResult', 'offset total_rows rows')):
    __slots__ = ()

    def docs(self):
        """
        Return the `Document` of each row that has one.

        `Missing` rows are skipped, as are rows for deleted documents (whose
        ``doc`` is ``None``).
        """
        return [
            row.doc for row in _found_rows(self.rows)
            if getattr(row, 'doc', None) is not None
        ]

    def docs_data(self):
        return [doc.data for doc in self.docs()]

    def missing(self):
        return [row.key for row in self.rows if isinstance(row, Missing)]


ReducedResult = namedtuple('ReducedResult', 'rows')


def decode_doc(obj, kind=None, codec=default_codec):
    """
    Build a `Document` from a document as CouchDB returns it.

    Fields starting with "_" are CouchDB's; everything else is decoded as
    *kind* to become ``Document.data``.
    """
    if not isinstance(obj, dict):
        raise DecodeError('expected a doc, got {!r}'.format(obj))
    _id = obj.get('_id')
    rev = obj.get('_rev')
    if not (_id and rev):
        raise DecodeError('doc is missing _id or _rev: {!r}'.format(obj))
    data = dict(
        (key, value) for (key, value) in obj.items()
        if not key.startswith('_')
    )
    return Document(
        _id,
        rev,
        codec.decode(data, kind),
        decode_attachments(obj.get('_attachments', {})),
        obj.get('_conflicts', ()),
    )


def encode_doc(doc, codec=default_codec):
    """
    Build the JSON body to PUT or bulk-save *doc*.
    """
    body = ({} if doc.data is None else codec.encode(doc.data))
    if not isinstance(body, dict):
        raise TypeError(
            'doc data must encode to a dict; got {!r}'.format(body)
        )
    body = dict(body)
    body['_id'] = doc.id
    if doc.rev:
        body['_rev'] = doc.rev
    if doc.attachments:
        body['_attachments'] = encode_attachments(doc.attachments)
    return body


def _field(row, name):
    try:
        return row[name]
    except (KeyError, TypeError) as e:
        raise DecodeError('row has no {!r}: {!r}'.format(name, row)) from e


def _check_row(row):
    if isinstance(row, dict) and 'error' in row:
        raise DecodeError(
            'no row for key {!r}: {}'.format(row.get('key'), row['error'])
        )


def row_decoder(key_type=None, value_type=None, codec=default_codec):
    def decode_row(row):
        _check_row(row)
        return Row(
            row.get('id'),
            codec.decode(_field(row, 'key'), key_type),
            codec.decode(_field(row, 'value'), value_type),
        )
    return decode_row


def docs_row_decoder(doc_type=None, key_type=None, value_type=None,
                     codec=default_codec):
    def decode_docs_row(row):
        _check_row(row)
        doc = row.get('doc')
        return DocsRow(
            row.get('id'),
            codec.decode(_field(row, 'key'), key_type),
            codec.decode(_field(row, 'value'), value_type),
            (None if doc is None else decode_doc(doc, doc_type, codec)),
        )
    return decode_docs_row


def reduced_row_decoder(key_type=None, value_type=None, codec=default_codec):
    def decode_reduced_row(row):
        return ReducedRow(
            codec.decode(row.get('key') if isinstance(row, dict) else None,
                key_type),
            codec.decode(_field(row, 'value'), value_type),
        )
    return decode_reduced_row


def allow_missing(decode_row, key_type=None, codec=default_codec):
    """
    Wrap *decode_row* so rows CouchDB couldn't find become `Missing`.
    """
    def decode_maybe_row(row):
        if isinstance(row, dict) and 'error' in row:
            return Missing(codec.decode(row.get('key'), key_type), row['error'])
        return Found(decode_row(row))
    return decode_maybe_row


def _rows(obj):
    rows = (obj.get('rows') if isinstance(obj, dict) else None)
    if not isinstance(rows, list):
        raise DecodeError('expected a result with rows, got {!r}'.format(obj))
    return rows


def decode_view_result(obj, decode_row):
    rows = _rows(obj)
    offset = obj.get('offset') or 0
    total_rows = obj.get('total_rows')
    if total_rows is None:
        total_rows = len(rows)
    return ViewResult(offset, total_rows, [decode_row(row) for row in rows])


def decode_reduced_result(obj, decode_row):
    return ReducedResult([decode_row(row) for row in _rows(obj)])
