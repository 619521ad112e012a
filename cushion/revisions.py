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
Revision bookkeeping shared by documents and attachments.

Every mutation of an existing document must carry both the document ID and
its current revision.  `preflight()` checks that locally, before any request
is made, and the decoders here turn what CouchDB sends back after a mutation
into `DocOk` and `DocError` values.
"""

from collections import namedtuple
import logging
from urllib.parse import quote

from . import CannotUpdate, DecodeError


log = logging.getLogger()


class DocOk(namedtuple('DocOk', 'id rev')):
    """
    A successful mutation; *rev* replaces the revision you had before.
    """

    __slots__ = ()
    ok = True


class DocError(namedtuple('DocError', 'id error reason')):
    """
    A document CouchDB refused within an otherwise accepted bulk request.
    """

    __slots__ = ()
    ok = False


def quote_id(_id):
    """
    Percent-encode a document ID for use as a single path component.

    >>> quote_id('foo/bar baz')
    'foo%2Fbar%20baz'

    """
    return quote(_id, safe='')


def quote_name(name):
    return quote(name)


def preflight(docs):
    """
    Raise `CannotUpdate` unless every doc in *docs* has an ID and a revision.

    This is all or nothing: one incomplete doc rejects the whole batch, and as
    nothing has been sent yet, nothing in the batch is changed.
    """
    bad = [doc for doc in docs if not (doc.id and doc.rev)]
    if bad:
        count = len(bad)
        log.warning('rejecting %d doc(s), %d missing _id or _rev',
            len(docs), count
        )
        msg = ('{} doc is missing _id or _rev' if count == 1
            else '{} docs are missing _id or _rev')
        raise CannotUpdate(bad, msg.format(count))


def decode_doc_ok(obj):
    """
    Build a `DocOk` from a single-document mutation response.

    >>> decode_doc_ok({'ok': True, 'id': 'foo', 'rev': '1-abc'})
    DocOk(id='foo', rev='1-abc')

    """
    try:
        return DocOk(obj['id'], obj['rev'])
    except (KeyError, TypeError) as e:
        raise DecodeError('bad mutation response: {!r}'.format(obj)) from e


def decode_bulk_row(row):
    if not isinstance(row, dict) or 'id' not in row:
        raise DecodeError('bad bulk row: {!r}'.format(row))
    if 'error' in row or 'rev' not in row:
        return DocError(row['id'], row.get('error'), row.get('reason'))
    return DocOk(row['id'], row['rev'])


def decode_bulk_rows(rows, count):
    """
    Decode the rows from ``POST /db/_bulk_docs``, one per submitted doc.
    """
    if not isinstance(rows, list) or len(rows) != count:
        raise DecodeError(
            'expected {} bulk rows, got {!r}'.format(count, rows)
        )
    results = [decode_bulk_row(row) for row in rows]
    failed = [r for r in results if not r.ok]
    if failed:
        log.warning('%s on %d of %d docs',
            failed[0].error, len(failed), len(results)
        )
    return results
