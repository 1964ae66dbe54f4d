"""
Decode the XPORT/XPT file format from SAS Version 5 or 6.

The SAS V5 Transport File format, also called XPORT, or simply XPT, is
a stream of 80-byte records.  Variable descriptors (namestrs) and
observations are logical records streamed across those physical
records, so each is reassembled from a rolling buffer.
"""

# All "records" are 80 bytes long, padded if necessary.
# Character data are ASCII-encoded.
# Integer data are big-endian.
# Floating point data are IBM-style double format.

# Standard Library
import logging
import math
import re
import struct
from datetime import datetime
from io import BytesIO

# Xport Modules
import xptdecode
from xptdecode.records import RECORD_SIZE, RecordSource, Section, classify, transition

__all__ = [
    'load',
    'loads',
    'Decoder',
    'ibm_to_ieee',
]

LOG = logging.getLogger(__name__)

TEXT_DATA_ENCODING = 'ISO-8859-1'


class Namestr:
    """
    Variable metadata from a SAS Version 5 or 6 Transport (XPORT) file.
    """

    # Here is the C structure definition for the namestr record:
    #
    # struct NAMESTR {
    #    short ntype;       /* VARIABLE TYPE: 1=NUMERIC, 2=CHAR       */
    #    short nhfun;       /* HASH OF NNAME (always 0)               */
    #    short nlng;        /* LENGTH OF VARIABLE IN OBSERVATION      */
    #    short nvar0;       /* VARNUM                                 */
    #    char8 nname;       /* NAME OF VARIABLE                       */
    #    char40 nlabel;     /* LABEL OF VARIABLE                      */
    #    char8 nform;       /* NAME OF FORMAT                         */
    #    short nfl;         /* FORMAT FIELD LENGTH OR 0               */
    #    short nfd;         /* FORMAT NUMBER OF DECIMALS              */
    #    short nfj;         /* 0=LEFT JUSTIFICATION, 1=RIGHT JUST     */
    #    char nfill[2];     /* (UNUSED, FOR ALIGNMENT AND FUTURE)     */
    #    char8 niform;      /* NAME OF INPUT FORMAT                   */
    #    short nifl;        /* INFORMAT LENGTH ATTRIBUTE              */
    #    short nifd;        /* INFORMAT NUMBER OF DECIMALS            */
    #    long npos;         /* POSITION OF VALUE IN OBSERVATION       */
    #    char rest[52];     /* remaining fields are irrelevant        */
    #    };
    #
    # The size given in the member header record is the actual number
    # of bytes of the NAMESTR structure: 140, or 136 under VAX/VMS, in
    # which case ``rest`` is truncated.  Field offsets are the same.

    fmts = {
        140: '>HHHH8s40s8sHHH2s8sHHl52s',
        136: '>HHHH8s40s8sHHH2s8sHHl48s',
    }

    def __init__(self, vtype, length, number, name, label, format, informat, position):
        """
        Initialize a ``Namestr``.
        """
        self.vtype = vtype
        self.length = length
        self.number = number
        self.name = name
        self.label = label
        self.format = format
        self.informat = informat
        self.position = position

    def __repr__(self):
        return f'<{type(self).__name__} #{self.number} {self.name!r} {self.vtype.name}>'

    def __eq__(self, other):
        """Equality."""
        if not isinstance(other, Namestr):
            return NotImplemented
        attributes = [
            'vtype',
            'length',
            'number',
            'name',
            'label',
            'format',
            'informat',
            'position',
        ]
        return all(getattr(self, name) == getattr(other, name) for name in attributes)

    @classmethod
    def from_bytes(cls, bytestring: bytes, encoding=TEXT_DATA_ENCODING):
        """
        Construct a ``Namestr`` from an XPORT-format byte string.
        """
        fmt = cls.fmts[len(bytestring)]
        tokens = struct.unpack(fmt, bytestring)
        self = cls(
            vtype=xptdecode.VariableType.from_code(tokens[0]),
            length=tokens[2],
            number=tokens[3],
            name=tokens[4].strip(b'\x00').decode(encoding).rstrip(' '),
            label=tokens[5].strip(b'\x00').decode(encoding).rstrip(' '),
            format=xptdecode.Format.from_struct_tokens(*tokens[6:10], encoding=encoding),
            informat=xptdecode.Informat.from_struct_tokens(*tokens[11:14], encoding=encoding),
            position=tokens[14],
        )
        LOG.debug(f'Decoded {self!r}')
        return self

    def to_variable(self):
        """
        Create an empty ``xptdecode.Variable`` described by this namestr.
        """
        return xptdecode.Variable(
            name=self.name,
            vtype=self.vtype,
            length=self.length,
            number=self.number,
            label=self.label,
            format=self.format,
            informat=self.informat,
            position=self.position,
        )


class LibraryHeader:
    """
    Library metadata from a SAS Version 5 or 6 Transport (XPORT) file.
    """

    # 1. The first header record:
    #
    #   HEADER RECORD*******LIBRARY HEADER RECORD!!!!!!!
    #   000000000000000000000000000000
    #
    # 2. The first real header record ... as a C structure:
    #
    #   struct REAL_HEADER {
    #      char sas_symbol[2][8];       /* "SAS", twice             */
    #      char saslib[8];              /* "SASLIB"                 */
    #      char sasver[8];              /* version of SAS used      */
    #      char sas_os[8];              /* operating system used    */
    #      char blanks[24];
    #      char sas_create[16];         /* datetime created         */
    #      };
    #
    # 3. Second real header record
    #
    #       ddMMMyy:hh:mm:ss
    #
    #    In this record, the string is the datetime modified.

    pattern = re.compile(
        rb'SAS {5}SAS {5}SASLIB {2}'
        rb'(?P<version>.{8})(?P<os>.{8}).{24}(?P<created>.{16})',
        re.DOTALL,
    )

    def __init__(self, sas_version='', sas_os='', created=None, modified=None):
        """
        Initialize a ``LibraryHeader``.
        """
        self.sas_version = sas_version
        self.sas_os = sas_os
        self.created = created
        self.modified = modified

    def __repr__(self):
        """
        Format for the REPL.
        """
        metadata = {
            'version': self.sas_version,
            'os': self.sas_os,
            'created': self.created,
            'modified': self.modified,
        }
        metadata = (f'{k.title()}: {v}' for k, v in metadata.items() if v)
        return f'<{type(self).__name__} {", ".join(metadata)}>'

    @classmethod
    def from_bytes(cls, bytestring, encoding=TEXT_DATA_ENCODING):
        """
        Construct a ``LibraryHeader`` from the first real header record.
        """
        mo = cls.pattern.match(bytestring)
        if mo is None:
            raise ValueError(
                f'Library header record does not begin with SAS symbols: {bytes(bytestring[:24])!r}'
            )
        return cls(
            sas_version=text_decode(mo['version'], encoding),
            sas_os=text_decode(mo['os'], encoding),
            created=strptime(mo['created']),
        )

    def update(self, bytestring):
        """
        Read the datetime modified from the second real header record.
        """
        self.modified = strptime(bytestring[:16])


class MemberHeader:
    """
    Dataset metadata from a SAS Version 5 or 6 Transport (XPORT) file.
    """

    # 4. Member header records
    #    Both of these records occur for every member in the file.
    #
    #    HEADER RECORD*******MEMBER  HEADER RECORD!!!!!!!
    #    000000000000000001600000000140
    #    HEADER RECORD*******DSCRPTR HEADER RECORD!!!!!!!
    #    000000000000000000000000000000
    #
    #    Note the 0140 that appears in the member header record above.
    #    This value specifies the size of the variable descriptor
    #    (NAMESTR) record.  On the VAX/VMS operating system, the value
    #    will be 0136 instead of 0140.
    #
    # 5. Member header data ... as C structure:
    #
    #       struct REAL_HEADER {
    #          char sas_symbol[8];      /* "SAS"                    */
    #          char sas_dsname[8];      /* dataset name             */
    #          char sasdata[8];         /* "SASDATA"                */
    #          char sasver[8];          /* version of SAS used      */
    #          char sas_osname[8];      /* operating system used    */
    #          char blanks[24];
    #          char sas_create[16];     /* datetime created         */
    #          };
    #
    #    The second header record as C structure:
    #
    #       struct SECOND_HEADER {
    #          char dtmod[16];            /* date modified           */
    #          char padding[16];
    #          char dslabel[40];          /* dataset label          */
    #          char dstype[8]             /* dataset type           */
    #          };

    pattern = re.compile(
        rb'SAS {5}(?P<name>.{8})SASDATA '
        rb'(?P<version>.{8})(?P<os>.{8}).{24}(?P<created>.{16})',
        re.DOTALL,
    )
    second_pattern = re.compile(
        rb'(?P<modified>.{16}).{16}(?P<label>.{40})(?P<type>.{8})',
        re.DOTALL,
    )

    def __init__(
        self,
        name,
        dataset_label='',
        dataset_type='',
        created=None,
        modified=None,
        sas_os='',
        sas_version='',
    ):
        """
        Initialize a ``MemberHeader``.
        """
        self.name = name
        self.dataset_label = dataset_label
        self.dataset_type = dataset_type
        self.created = created
        self.modified = modified
        self.sas_os = sas_os
        self.sas_version = sas_version

    def __repr__(self):
        """
        Format for the REPL.
        """
        metadata = {
            'name': self.name,
            'label': self.dataset_label,
            'type': self.dataset_type,
            'created': self.created,
            'modified': self.modified,
            'os': self.sas_os,
            'version': self.sas_version,
        }
        metadata = (f'{k.title()}: {v}' for k, v in metadata.items() if v)
        return f'<{type(self).__name__} {", ".join(metadata)}>'

    @classmethod
    def from_bytes(cls, bytestring, encoding=TEXT_DATA_ENCODING):
        """
        Construct a ``MemberHeader`` from the first member data record.
        """
        mo = cls.pattern.match(bytestring)
        if mo is None:
            raise ValueError(
                f'Member header record does not match SAS layout: {bytes(bytestring[:24])!r}'
            )
        return cls(
            name=text_decode(mo['name'], encoding),
            sas_version=text_decode(mo['version'], encoding),
            sas_os=text_decode(mo['os'], encoding),
            created=strptime(mo['created']),
        )

    def update(self, bytestring, encoding=TEXT_DATA_ENCODING):
        """
        Read the modified datetime, label, and type from the second record.
        """
        mo = self.second_pattern.match(bytestring)
        self.modified = strptime(mo['modified'])
        self.dataset_label = text_decode(mo['label'], encoding)
        self.dataset_type = text_decode(mo['type'], encoding)


def descriptor_size(record):
    """
    Get the namestr size declared in a MEMBER header record.

    ``140`` is the usual size; any other number means the 136-byte
    VAX/VMS layout.
    """
    text = bytes(record[75:78])
    if not text.isdigit():
        raise xptdecode.MalformedHeaderField(f'Descriptor size {text!r} is not a number')
    return 140 if text == b'140' else 136


def variable_count(record):
    """
    Get the number of variables declared in a NAMESTR header record.
    """
    # 000000xxxx00000000000000000000, xxxx blank-padded.
    text = bytes(record[54:58])
    if not text.strip(b' ').isdigit():
        raise xptdecode.MalformedHeaderField(f'Variable count {text!r} is not a number')
    return int(text)


def text_decode(bytestring, encoding=TEXT_DATA_ENCODING):
    """
    Decode a fixed-width text field, dropping NUL and blank padding.
    """
    return bytes(bytestring).strip(b'\x00').decode(encoding).strip()


def strptime(timestring):
    """
    Parse a datetime from an XPT format string.

    All text in an XPT document are ASCII-encoded.  This function
    expects a bytes string in the "ddMMMyy:hh:mm:ss" format.  For
    example, ``b'16FEB11:10:07:55'``.  Note that XPT supports only
    2-digit years, which are expected to be either 1900s or 2000s.
    A blank field means the datetime was not recorded.  An unreadable
    datetime is logged and also gives ``None``.
    """
    text = bytes(timestring).decode('ascii', errors='replace').strip()
    if not text.strip('\x00'):
        return None
    try:
        return datetime.strptime(text, '%d%b%y:%H:%M:%S')
    except ValueError:
        LOG.warning(f'Ignoring invalid datetime {text!r}')
        return None


def ibm_to_ieee(ibm: bytes) -> float:
    """
    Convert IBM-format floating point (bytes) to IEEE 754 64-bit (float).
    """
    # IBM mainframe:    sign * 0.mantissa * 16 ** (exponent - 64)
    # Python uses IEEE: sign * 1.mantissa * 2 ** (exponent - 1023)

    if len(ibm) != 8:
        raise ValueError(f'IBM-format float must be 8 bytes, got {len(ibm)}')

    # parse the 64 bits of IBM float as one 8-byte unsigned long long
    ulong, = struct.unpack('>Q', ibm)
    if ulong == 0:
        return 0.0

    # IBM: 1-bit sign, 7-bits exponent, 56-bits mantissa
    sign = ulong & 0x8000000000000000
    exponent = ((ulong & 0x7f00000000000000) >> 56) - 64
    mantissa = ulong & 0x00ffffffffffffff

    # The mantissa is a base-256 fraction of 7 bytes, 0.mantissa, and the
    # exponent is base 16, so the value is mantissa * 2 ** (4 * e - 56).
    value = math.ldexp(mantissa, 4 * exponent - 56)
    return -value if sign else value


class NamestrAssembler:
    """
    Reassemble namestr records streamed across 80-byte records.
    """

    # 7. Namestr records
    #    Each namestr field is 140 bytes long, but the fields are
    #    streamed together and broken in 80-byte pieces. If the last
    #    byte of the last namestr field does not fall in the last byte
    #    of the 80-byte record, the record is padded with ASCII blanks
    #    to 80 bytes.

    def __init__(self, buffer, size, encoding=TEXT_DATA_ENCODING):
        """
        Initialize with the decode pass's rolling buffer.
        """
        self.buffer = buffer
        self.size = size
        self.encoding = encoding
        self.count = 0

    def feed(self, record):
        """
        Append a record and get the namestrs it completes.
        """
        self.buffer += record
        namestrs = []
        while len(self.buffer) >= self.size:
            chunk = bytes(self.buffer[:self.size])
            del self.buffer[:self.size]
            namestrs.append(Namestr.from_bytes(chunk, self.encoding))
        self.count += len(namestrs)
        return namestrs


class ObservationAssembler:
    """
    Reassemble observations streamed across 80-byte records.

    Each observation is split into cells, appended to the variables'
    ``cells`` lists.
    """

    # 9. Data records
    #    Data records are streamed in the same way that namestrs are.
    #    There is ASCII blank padding at the end of the last record if
    #    necessary. There is no special trailing record.

    def __init__(self, buffer, variables, encoding=TEXT_DATA_ENCODING):
        """
        Initialize with the decode pass's rolling buffer.
        """
        self.buffer = buffer
        self.variables = variables
        self.encoding = encoding
        self.width = sum(v.length for v in variables)
        self.sentinel = b' ' * self.width
        self.count = 0
        # Blank rows may be padding, until a later row shows otherwise.
        self.pending = []

        def character_decode(s):
            return s.decode(self.encoding).rstrip(' ')

        self.converters = []
        for v in variables:
            if v.vtype == xptdecode.VariableType.NUMERIC:
                self.converters.append(ibm_to_ieee)
            else:
                self.converters.append(character_decode)

    def feed(self, record):
        """
        Append a record and decode every observation it completes.
        """
        self.buffer += record
        if not self.width:
            self.buffer.clear()
            return
        while len(self.buffer) >= self.width:
            row = bytes(self.buffer[:self.width])
            del self.buffer[:self.width]
            if row == self.sentinel:
                self.pending.append(row)
                continue
            self.flush()
            self.append(row)

    def append(self, row):
        """
        Decode one observation and append its cells.
        """
        cells = []
        i = 0
        for v, f in zip(self.variables, self.converters):
            cells.append(f(row[i:i + v.length]))
            i += v.length
        for v, cell in zip(self.variables, cells):
            v.cells.append(cell)
        self.count += 1

    def flush(self):
        """
        Append the held-back blank rows as real observations.
        """
        for blank in self.pending:
            self.append(blank)
        self.pending.clear()

    def finish(self):
        """
        Decide which held-back blank rows were end-of-file padding.
        """
        remainder = bytes(self.buffer)
        self.buffer.clear()
        if not self.width:
            return
        # Padding never fills the whole final record.
        padding = max(0, (RECORD_SIZE - 1 - len(remainder)) // self.width)
        real = max(0, len(self.pending) - padding)
        for blank in self.pending[:real]:
            self.append(blank)
        if len(self.pending) > real:
            LOG.debug(f'Dropped {len(self.pending) - real} blank rows of padding')
        self.pending.clear()
        if remainder.strip(b' '):
            LOG.warning(f'Discarding {len(remainder)} bytes of a partial observation')


class Decoder:
    """
    Single pass over the records of a SAS Version 5 or 6 Transport file.

    The decoder tracks the current section, routes each non-header
    record to that section's handler, and builds ``self.dataset``.  If
    decoding fails, ``self.dataset`` keeps everything decoded so far.

        decoder = Decoder()
        for record in records:
            decoder.feed(record)
        dataset = decoder.finish()
    """

    def __init__(self, encoding=TEXT_DATA_ENCODING):
        """
        Initialize a decode pass.
        """
        self.encoding = encoding
        self.section = Section.NONE
        self.buffer = bytearray()
        self.dataset = xptdecode.Dataset()
        self.namestrs = None
        self.observations = None
        self.index = 0  # Non-header records seen in the current section.
        self.handlers = {
            Section.NONE: self.read_unexpected,
            Section.LIBRARY: self.read_library,
            Section.MEMBER: self.read_member,
            Section.DESCRIPTOR: self.read_descriptor,
            Section.NAMESTR: self.read_namestr,
            Section.OBSERVATION: self.read_observation,
        }
        self.openers = {
            Section.MEMBER: self.open_member,
            Section.NAMESTR: self.open_namestr,
            Section.OBSERVATION: self.open_observation,
        }

    def feed(self, record):
        """
        Classify one 80-byte record and handle it.
        """
        marker = classify(record)
        if marker is None:
            try:
                self.handlers[self.section](record)
            except UnicodeDecodeError as e:
                raise self.text_error(e) from e
            self.index += 1
            return
        section = transition(self.section, marker)
        LOG.debug(f'Section {self.section.name} -> {section.name}')
        opener = self.openers.get(section)
        if opener is not None:
            opener(record)
        self.section = section
        self.index = 0

    def finish(self):
        """
        Handle a clean end of stream and get the decoded dataset.
        """
        if self.section == Section.NONE:
            raise xptdecode.MissingHeader('No header record before end of stream')
        if self.observations is not None:
            try:
                self.observations.finish()
            except UnicodeDecodeError as e:
                raise self.text_error(e) from e
        LOG.info(f'Decoded {self.dataset!r}')
        return self.dataset

    def decode(self, fp):
        """
        Read every record from ``fp`` and get the decoded dataset.
        """
        records = RecordSource(fp)
        try:
            for record in records:
                self.feed(record)
            return self.finish()
        except xptdecode.XportError as e:
            LOG.error(f'Decoding failed in {self.section.name} section at record {records.count}')
            if isinstance(e, xptdecode.TruncatedStream) and self.observations is not None:
                # Padding only occurs in the final record, which never arrived.
                self.observations.flush()
            e.dataset = self.dataset
            raise

    def text_error(self, error):
        return xptdecode.MalformedText(
            f'Cannot decode {self.section.name} text as {self.encoding}: {error.reason}'
        )

    def read_unexpected(self, record):
        raise xptdecode.MissingHeader(
            f'Expected a LIBRARY header record, got {bytes(record[:48])!r}'
        )

    def read_library(self, record):
        library = self.dataset.library
        try:
            if self.index == 0:
                self.dataset.library = LibraryHeader.from_bytes(record, self.encoding)
            elif self.index == 1 and library is not None:
                library.update(record)
        except ValueError as e:
            LOG.warning(f'Ignoring unreadable library metadata: {e}')

    def read_member(self, record):
        LOG.debug('Ignoring member section record')

    def read_descriptor(self, record):
        member = self.dataset.member
        try:
            if self.index == 0:
                self.dataset.member = MemberHeader.from_bytes(record, self.encoding)
            elif self.index == 1 and member is not None:
                member.update(record, self.encoding)
        except ValueError as e:
            LOG.warning(f'Ignoring unreadable member metadata: {e}')

    def read_namestr(self, record):
        for namestr in self.namestrs.feed(record):
            self.dataset.variables.append(namestr.to_variable())

    def read_observation(self, record):
        self.observations.feed(record)

    def open_member(self, record):
        size = descriptor_size(record)
        if size == 136:
            LOG.warning('File written on VAX/VMS, 136-byte namestr records')
        self.dataset.descriptor_size = size

    def open_namestr(self, record):
        self.dataset.variable_count = variable_count(record)
        LOG.debug(f'Expecting {self.dataset.variable_count} variables')
        self.namestrs = NamestrAssembler(self.buffer, self.dataset.descriptor_size, self.encoding)

    def open_observation(self, record):
        variables = self.dataset.variables
        n = self.dataset.variable_count
        if len(variables) != n:
            raise xptdecode.DescriptorMismatch(f'Expected {n} namestrs, got {len(variables)}')
        for v in variables:
            if v.vtype == xptdecode.VariableType.NUMERIC and v.length != 8:
                raise xptdecode.DescriptorMismatch(
                    f'Numeric variable {v.name!r} has length {v.length}, expected 8'
                )
        self.dataset.row_width = sum(v.length for v in variables)
        LOG.debug(f'Observations are {self.dataset.row_width} bytes wide')
        self.buffer.clear()  # Discard namestr padding.
        self.observations = ObservationAssembler(self.buffer, variables, self.encoding)


def load(fp, encoding=TEXT_DATA_ENCODING):
    """
    Deserialize a SAS dataset from a SAS Transport v5 (XPT) file.

        >>> with open('test/data/example.xpt', 'rb') as f:
        ...     dataset = load(f)
    """
    return Decoder(encoding=encoding).decode(fp)


def loads(bytestring, encoding=TEXT_DATA_ENCODING):
    """
    Deserialize a SAS dataset from an XPORT-format string.

        >>> with open('test/data/example.xpt', 'rb') as f:
        ...     bytestring = f.read()
        >>> dataset = loads(bytestring)
    """
    return load(BytesIO(bytestring), encoding=encoding)
