"""
Physical records and header classification for SAS Transport files.

An XPORT document is a stream of 80-byte records.  Header records begin
with one of a handful of fixed markers; everything between two headers
belongs to the section opened by the first one.
"""

# All "records" are 80 bytes long, padded if necessary.

# Standard Library
import enum
import logging
from collections.abc import Iterator

# Xport Modules
import xptdecode

__all__ = [
    'RECORD_SIZE',
    'Marker',
    'Section',
    'RecordSource',
    'classify',
    'transition',
]

LOG = logging.getLogger(__name__)

RECORD_SIZE = 80


class Marker(bytes, enum.Enum):
    """
    The first 48 bytes of each kind of header record.
    """

    # HEADER RECORD*******LIBRARY HEADER RECORD!!!!!!!000000000000000000000000000000
    # HEADER RECORD*******MEMBER  HEADER RECORD!!!!!!!000000000000000001600000000140
    # HEADER RECORD*******DSCRPTR HEADER RECORD!!!!!!!000000000000000000000000000000
    # HEADER RECORD*******NAMESTR HEADER RECORD!!!!!!!000000xxxx00000000000000000000
    # HEADER RECORD*******OBS     HEADER RECORD!!!!!!!000000000000000000000000000000

    LIBRARY = b'HEADER RECORD*******LIBRARY HEADER RECORD!!!!!!!'
    MEMBER = b'HEADER RECORD*******MEMBER  HEADER RECORD!!!!!!!'
    DESCRIPTOR = b'HEADER RECORD*******DSCRPTR HEADER RECORD!!!!!!!'
    NAMESTR = b'HEADER RECORD*******NAMESTR HEADER RECORD!!!!!!!'
    OBSERVATION = b'HEADER RECORD*******OBS     HEADER RECORD!!!!!!!'


class Section(enum.Enum):
    """
    The part of the document the decoder is currently reading.
    """
    NONE = 'none'
    LIBRARY = 'library'
    MEMBER = 'member'
    DESCRIPTOR = 'descriptor'
    NAMESTR = 'namestr'
    OBSERVATION = 'observation'


# Each marker opens the section of the same name, but only from the
# section that precedes it in a single-member library.
TRANSITIONS = {
    (Section.NONE, Marker.LIBRARY): Section.LIBRARY,
    (Section.LIBRARY, Marker.MEMBER): Section.MEMBER,
    (Section.MEMBER, Marker.DESCRIPTOR): Section.DESCRIPTOR,
    (Section.DESCRIPTOR, Marker.NAMESTR): Section.NAMESTR,
    (Section.NAMESTR, Marker.OBSERVATION): Section.OBSERVATION,
}


def classify(record):
    """
    Get the ``Marker`` a header record begins with, or None for data.
    """
    prefix = bytes(record[:len(Marker.LIBRARY.value)])
    try:
        return Marker(prefix)
    except ValueError:
        return None


def transition(section, marker):
    """
    Get the section opened by ``marker`` when read in ``section``.

    Raises ``UnexpectedHeader`` for every pair outside the normal order
    LIBRARY, MEMBER, DSCRPTR, NAMESTR, OBS.
    """
    try:
        return TRANSITIONS[section, marker]
    except KeyError:
        raise xptdecode.UnexpectedHeader(
            f'{marker.name} header record not allowed in {section.name} section'
        ) from None


class RecordSource(Iterator):
    """
    Iterator of 80-byte records from a binary file object.

    Stops at end of stream on a record boundary.  A partial record at
    the end raises ``TruncatedStream``.
    """

    def __init__(self, fp, size=RECORD_SIZE):
        """
        Initialize from an open, binary-mode file object.
        """
        self.fp = fp
        self.size = size
        self.count = 0

    def __next__(self):
        """
        Read the next record.
        """
        chunks = []
        remaining = self.size
        while remaining:
            try:
                chunk = self.fp.read(remaining)
            except UnicodeDecodeError:
                raise TypeError(
                    f'Expected a file object in bytes-mode, got {type(self.fp).__name__}'
                )
            if not chunk:
                break
            if isinstance(chunk, str):
                raise TypeError(
                    f'Expected a file object in bytes-mode, got {type(self.fp).__name__}'
                )
            chunks.append(chunk)
            remaining -= len(chunk)
        record = b''.join(chunks)
        if not record:
            LOG.debug(f'End of stream after {self.count} records')
            raise StopIteration
        if len(record) < self.size:
            raise xptdecode.TruncatedStream(
                f'Record {self.count + 1} has {len(record)} of {self.size} bytes'
            )
        self.count += 1
        return record
