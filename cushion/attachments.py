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
Attachments, as stubs and inline.

CouchDB shows an attachment in one of two ways.  Normally a document only
carries a *stub*: the content type, length and digest, but no bytes.  When you
ask for ``attachments=true``, the bytes come along inline, base64-encoded, and
there is no length.  `decode_attachment()` turns either into an
`AttachmentMeta`, and `encode_attachments()` turns them back into what CouchDB
expects in ``doc['_attachments']``.
"""

from base64 import b64encode, b64decode
import binascii
from collections import namedtuple
import logging

from . import DecodeError, not_found
from .revisions import decode_doc_ok, preflight, quote_id, quote_name


log = logging.getLogger()

# Reported as the length of an inline attachment:
INLINE_LENGTH = -1

Attachment = namedtuple('Attachment', 'content_type data')


class AttachmentMeta(namedtuple('AttachmentMeta',
        'content_type length digest stub data')):
    """
    An attachment as it appears in a fetched document.

    *data* is ``None`` for a stub, the decoded ``bytes`` when inline.
    """

    __slots__ = ()

    def to_bytes(self):
        if self.stub:
            raise ValueError('stub attachment has no data')
        return self.data


def encode_attachment(attachment):
    """
    Encode *attachment* for use in ``doc['_attachments']``.

    For example:

    >>> from cushion import dumps
    >>> attachment = Attachment('image/png', b'PNG data')
    >>> dumps(encode_attachment(attachment))
    '{"content_type":"image/png","data":"UE5HIGRhdGE="}'

    :param attachment: an `Attachment` or an inline `AttachmentMeta`
    """
    if not isinstance(attachment.content_type, str):
        raise TypeError(
            'content_type must be a str; got {!r}'.format(
                attachment.content_type
            )
        )
    if not isinstance(attachment.data, bytes):
        raise TypeError('data must be bytes')
    return {
        'content_type': attachment.content_type,
        'data': b64encode(attachment.data).decode(),
    }


def encode_stub(meta):
    return {
        'stub': True,
        'content_type': meta.content_type,
        'length': meta.length,
        'digest': meta.digest,
    }


def encode_attachments(attachments):
    """
    Encode a name => attachment mapping for ``doc['_attachments']``.

    Stubs are sent back as stubs so that CouchDB keeps the stored content;
    everything else is sent inline.
    """
    encoded = {}
    for (name, att) in attachments.items():
        if isinstance(att, AttachmentMeta) and att.stub:
            encoded[name] = encode_stub(att)
        else:
            encoded[name] = encode_attachment(att)
    return encoded


def decode_attachment(obj):
    """
    Interpret the attachment metadata *obj* from ``doc['_attachments']``.

    For example, a stub:

    >>> decode_attachment({
    ...     'content_type': 'text/plain',
    ...     'length': 5,
    ...     'digest': 'md5-XUFAKrxLKna5cZ2REBfFkg==',
    ...     'stub': True,
    ... })
    AttachmentMeta(content_type='text/plain', length=5, digest='md5-XUFAKrxLKna5cZ2REBfFkg==', stub=True, data=None)

    And the same attachment inline:

    >>> decode_attachment({
    ...     'content_type': 'text/plain',
    ...     'digest': 'md5-XUFAKrxLKna5cZ2REBfFkg==',
    ...     'data': 'aGVsbG8=',
    ... })
    AttachmentMeta(content_type='text/plain', length=-1, digest='md5-XUFAKrxLKna5cZ2REBfFkg==', stub=False, data=b'hello')

    """
    if not isinstance(obj, dict):
        raise DecodeError('bad attachment metadata: {!r}'.format(obj))
    try:
        content_type = obj['content_type']
        digest = obj.get('digest')
        if 'data' in obj:
            data = b64decode(obj['data'].encode(), validate=True)
            return AttachmentMeta(content_type, INLINE_LENGTH, digest, False, data)
        return AttachmentMeta(content_type, obj['length'], digest, True, None)
    except (KeyError, AttributeError, binascii.Error) as e:
        raise DecodeError(
            'bad attachment metadata: {!r}'.format(obj)
        ) from e


def decode_attachments(obj):
    if not isinstance(obj, dict):
        raise DecodeError('bad _attachments: {!r}'.format(obj))
    return dict(
        (name, decode_attachment(meta)) for (name, meta) in obj.items()
    )


def _doc_id(doc):
    return (doc if isinstance(doc, str) else doc.id)


class AttachmentManager:
    """
    Attach, fetch, and delete standalone attachments.

    Attaching or deleting changes the document, so both need the document's
    current revision and return the new one as a `cushion.revisions.DocOk`.
    """

    def __init__(self, db):
        self.db = db

    def __repr__(self):
        return '{}({!r})'.format(self.__class__.__name__, self.db)

    def attach(self, doc, name, data, content_type='application/octet-stream'):
        preflight([doc])
        if not isinstance(data, bytes):
            raise TypeError('data must be bytes; got {!r}'.format(type(data)))
        r = self.db.put_att(content_type, data, quote_id(doc.id),
            quote_name(name), rev=doc.rev, expect=201
        )
        log.debug('attached %r to %r', name, doc.id)
        return decode_doc_ok(r)

    def delete_attachment(self, doc, name):
        preflight([doc])
        r = self.db.delete(quote_id(doc.id), quote_name(name),
            rev=doc.rev, expect=200
        )
        return decode_doc_ok(r)

    def get_attachment(self, doc, name):
        """
        Return the raw bytes of attachment *name*.

        *doc* can be a `cushion.model.Document` or a document ID.
        """
        _id = _doc_id(doc)
        if not _id:
            raise not_found('GET', self.db.basepath, 'empty doc id')
        if not name:
            raise not_found('GET', self.db.basepath + quote_id(_id),
                'empty attachment name'
            )
        return self.db.get_att(quote_id(_id), quote_name(name))

    def get_attachment_url(self, doc, name):
        """
        Return the absolute URL of attachment *name*, without fetching it.
        """
        path = self.db.basepath + quote_id(_doc_id(doc)) + '/' + quote_name(name)
        return self.db.ctx.full_url(path)
