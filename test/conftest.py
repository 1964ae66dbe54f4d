"""
Shared test fixtures.
"""

# Standard Library
import struct

# Community Packages
import pytest

# Xport Modules
from xptdecode.records import Marker


@pytest.fixture(scope='session')
def library_bytestring():
    """
    A 4-column, 6-row dataset with numbers and text in SAS V5 Transport format.
    """
    return b'''\
HEADER RECORD*******LIBRARY HEADER RECORD!!!!!!!000000000000000000000000000000  \
SAS     SAS     SASLIB  9.3     W32_7PRO                        13NOV15:10:35:08\
13NOV15:10:35:08                                                                \
HEADER RECORD*******MEMBER  HEADER RECORD!!!!!!!000000000000000001600000000140  \
HEADER RECORD*******DSCRPTR HEADER RECORD!!!!!!!000000000000000000000000000000  \
SAS     ECON    SASDATA 9.3     W32_7PRO                        13NOV15:10:35:08\
13NOV15:10:35:08                Blank-padded dataset label                      \
HEADER RECORD*******NAMESTR HEADER RECORD!!!!!!!000000000400000000000000000000  \
\x00\x02\x00\x00\x00\x08\x00\x01VIT_STATVital status                            \
$       \x00\x05\x00\x00\x00\x00\x00\x00        \x00\x00\x00\x00\x00\x00\x00\x00\
\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\
\x00\x02\x00\x00\x00\x08\x00\x02ECON    Economic status                         \
$CHAR   \x00\x04\x00\x00\x00\x01\x00\x00        \x00\x00\x00\x00\x00\x00\x00\x08\
\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\
\x00\x01\x00\x00\x00\x08\x00\x03COUNT   Count                                   \
COMMA   \x00\x08\x00\x00\x00\x00\x00\x00        \x00\x00\x00\x00\x00\x00\x00\x10\
\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\
\x00\x01\x00\x00\x00\x08\x00\x04TEMP    Temperature                             \
        \x00\x08\x00\x01\x00\x00\x00\x00        \x00\x00\x00\x00\x00\x00\x00\x18\
\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\
HEADER RECORD*******OBS     HEADER RECORD!!!!!!!000000000000000000000000000000  \
ALIVE   POOR    CL\x00\x00\x00\x00\x00\x00Bb\x99\x99\x99\x99\x99\x98\
ALIVE   NOT     Cn\x10\x00\x00\x00\x00\x00B_fffffh\
ALIVE   UNK     C\x9dP\x00\x00\x00\x00\x00BV\xb333334\
DEAD    POOR    B\xfe\x00\x00\x00\x00\x00\x00B]fffffh\
DEAD    NOT     B<\x00\x00\x00\x00\x00\x00Bg\x80\x00\x00\x00\x00\x00\
DEAD    UNK     B\x89\x00\x00\x00\x00\x00\x00B8\xb333334\
                                                \
'''


@pytest.fixture(scope='session')
def library_rows():
    """
    The observations encoded in ``library_bytestring``.
    """
    return [
        ('ALIVE', 'POOR', 1216.0, 98.6),
        ('ALIVE', 'NOT', 1761.0, 95.4),
        ('ALIVE', 'UNK', 2517.0, 86.7),
        ('DEAD', 'POOR', 254.0, 93.4),
        ('DEAD', 'NOT', 60.0, 103.5),
        ('DEAD', 'UNK', 137.0, 56.7),
    ]


def header_record(marker, digits='0' * 30):
    """
    Build an 80-byte header record.
    """
    return marker.value + digits.encode('ascii') + b'  '


def pad(bytestring):
    """
    Blank-pad to a whole number of 80-byte records.
    """
    return bytestring + b' ' * (-len(bytestring) % 80)


def namestr_bytes(vtype, length, number, name, label='', position=0, size=140):
    """
    Build one namestr record.
    """
    head = struct.pack(
        '>HHHH8s40s8sHHH2s8sHHl',
        vtype,
        0,
        length,
        number,
        name.encode('ascii').ljust(8),
        label.encode('ascii').ljust(40),
        b' ' * 8,
        0,
        0,
        0,
        b'\x00\x00',
        b' ' * 8,
        0,
        0,
        position,
    )
    return head + b'\x00' * (size - len(head))


@pytest.fixture(scope='session')
def make_namestr():
    return namestr_bytes


@pytest.fixture(scope='session')
def make_document():
    """
    Build an XPORT document from ``(vtype, length, name)`` variables and raw rows.
    """

    def build(variables, rows=(), size=140, count=None, size_code=None, count_code=None):
        if size_code is None:
            size_code = f'{size:03d}'
        if count is None:
            count = len(variables)
        if count_code is None:
            count_code = f'{count:04d}'
        namestrs = []
        position = 0
        for number, (vtype, length, name) in enumerate(variables, 1):
            namestrs.append(namestr_bytes(vtype, length, number, name, position=position, size=size))
            position += length
        return b''.join([
            header_record(Marker.LIBRARY),
            b'SAS     SAS     SASLIB  9.4     X64_10PR' + b' ' * 24 + b'01JAN20:00:00:00',
            b'01JAN20:00:00:00'.ljust(80),
            header_record(Marker.MEMBER, '0' * 17 + '16' + '0' * 8 + size_code[-3:].rjust(3, '0')),
            header_record(Marker.DESCRIPTOR),
            b'SAS     TEST    SASDATA 9.4     X64_10PR' + b' ' * 24 + b'01JAN20:00:00:00',
            (b'01JAN20:00:00:00' + b' ' * 16 + b'Test data'.ljust(40) + b'DATA'.rjust(8)),
            header_record(Marker.NAMESTR, '0' * 6 + count_code + '0' * 20),
            pad(b''.join(namestrs)),
            header_record(Marker.OBSERVATION),
            pad(b''.join(rows)),
        ])

    return build
