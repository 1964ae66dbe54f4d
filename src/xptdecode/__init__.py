"""
Decode SAS Transport (XPORT/XPT) files into typed variables and rows.
"""

# Standard Library
import enum
import logging
from typing import Union

# Community Packages
import pandas as pd

from .__about__ import __version__  # noqa: F401 module imported but unused

LOG = logging.getLogger(__name__)

__all__ = [
    'Dataset',
    'Variable',
    'VariableType',
    'Format',
    'Informat',
    'XportError',
    'MalformedInput',
    'MalformedText',
    'load',
    'loads',
]

# A decoded cell is a float for numeric variables and text for character
# variables.  The tag is the owning variable's ``vtype``.
DataCell = Union[float, str]


class XportError(Exception):
    """
    Failure to decode an XPORT document.

    The partially decoded ``Dataset`` is available as ``.dataset`` once the
    error has left the decoder.
    """

    def __init__(self, *args, dataset=None):
        super().__init__(*args)
        self.dataset = dataset


class MalformedInput(XportError, ValueError):
    """The document does not follow the XPORT record layout."""


class TruncatedStream(MalformedInput):
    """End of stream in the middle of an 80-byte record."""


class MissingHeader(MalformedInput):
    """Data or end of stream before the first header record."""


class UnexpectedHeader(MalformedInput):
    """A header record that may not follow the current section."""


class MalformedHeaderField(MalformedInput):
    """A fixed-position header field could not be parsed."""


class DescriptorMismatch(MalformedInput):
    """Variable descriptors disagree with the declared layout."""


class MalformedText(MalformedInput):
    """Character data that the chosen encoding cannot decode."""


class VariableType(enum.IntEnum):
    """
    SAS variables can be either Numeric or Character type.
    """
    NUMERIC = 1
    CHARACTER = 2

    @classmethod
    def from_code(cls, code):
        """
        Interpret a namestr type code.  Anything but 1 is character data.
        """
        return cls.NUMERIC if code == cls.NUMERIC else cls.CHARACTER


class FormatAlignment(enum.IntEnum):
    """
    SAS formats are either left- or right-aligned.
    """
    LEFT = 0
    RIGHT = 1


class Informat:
    """
    SAS variable informat.

    Stored as found in the file, without validation.
    """

    def __init__(self, name='', length=0, decimals=0):
        """
        Initialize an input format.
        """
        self._name = name
        self._length = length
        self._decimals = decimals

    def __str__(self):
        """
        Pleasant display value.
        """
        if not (self.name or self.length or self.decimals):
            return ''
        decimals = self.decimals if self.decimals else ''
        return f'{self.name}{self.length}.{decimals}'

    def __repr__(self):
        """
        REPL-format string.
        """
        return '{cls}(name={name!r}, length={length!r}, decimals={decimals!r})'.format(
            cls=type(self).__name__,
            name=self.name,
            length=self.length,
            decimals=self.decimals,
        )

    @classmethod
    def from_struct_tokens(cls, name, length, decimals, encoding='ascii'):
        """
        Create an informat from unpacked struct tokens.
        """
        name = name.strip(b'\x00').decode(encoding).strip()
        return cls(name=name, length=length, decimals=decimals)

    @property
    def name(self):
        """The name of the format."""  # noqa: D401
        return self._name

    @property
    def length(self):
        """The width value of the format: ``INFORMATw.``."""  # noqa: D401
        return self._length

    @property
    def decimals(self):
        """The ``d`` value of numeric formats: ``INFORMATw.d``."""  # noqa: D401
        return self._decimals

    def __eq__(self, other):
        """Equality."""
        if not isinstance(other, Informat):
            return NotImplemented
        attributes = [
            'name',
            'length',
            'decimals',
        ]
        return all(getattr(self, a) == getattr(other, a) for a in attributes)


class Format(Informat):
    """
    SAS variable format.
    """

    def __init__(self, name='', length=0, decimals=0, justify=FormatAlignment.LEFT):
        """
        Initialize a SAS variable format.
        """
        self._justify = justify
        super().__init__(name, length, decimals)

    def __repr__(self):
        """
        REPL-format string.
        """
        fmt = '{cls}(name={name!r}, length={length!r}, decimals={decimals!r}, justify={justify})'
        return fmt.format(
            cls=type(self).__name__,
            name=self.name,
            length=self.length,
            decimals=self.decimals,
            justify=self.justify,
        )

    @classmethod
    def from_struct_tokens(cls, name, length, decimals, justify, encoding='ascii'):
        """
        Create a format from unpacked struct tokens.
        """
        form = super().from_struct_tokens(name, length, decimals, encoding)
        form._justify = justify
        return form

    @property
    def justify(self):
        """
        Left- or right-alignment code, kept as found in the file.
        """
        return self._justify

    def __eq__(self, other):
        """Equality."""
        if not isinstance(other, Format):
            return NotImplemented
        return super().__eq__(other) and self.justify == other.justify


class Variable:
    """
    SAS variable: descriptor metadata plus the decoded cells.

    Metadata is read-only once decoded.  The ``cells`` list grows by one
    value per observation.
    """

    def __init__(
        self,
        name,
        vtype,
        length,
        number=None,
        label='',
        format=None,
        informat=None,
        position=None,
    ):
        """
        Initialize SAS variable metadata.
        """
        self._name = name
        self._vtype = VariableType(vtype)
        self._length = length
        self._number = number
        self._label = label
        self._format = format if format is not None else Format()
        self._informat = informat if informat is not None else Informat()
        self._position = position
        self.cells = []

    def __repr__(self):
        """REPL-format."""
        return (
            f'<{type(self).__name__} #{self.number} {self.name!r} {self.vtype.name.title()} '
            f'length={self.length} cells={len(self.cells)}>'
        )

    def __len__(self):
        return len(self.cells)

    def __iter__(self):
        return iter(self.cells)

    def __getitem__(self, index):
        return self.cells[index]

    @property
    def name(self):
        return self._name

    @property
    def vtype(self):
        return self._vtype

    @property
    def length(self):
        """
        Width in bytes of each value in an observation.
        """
        return self._length

    @property
    def number(self):
        """
        1-based position in the declared variable order.
        """
        return self._number

    @property
    def label(self):
        return self._label

    @property
    def format(self):
        return self._format

    @property
    def informat(self):
        return self._informat

    @property
    def position(self):
        """
        Byte offset of the value within an observation.
        """
        return self._position

    def to_series(self):
        """
        Copy the cells into a Pandas ``Series``.
        """
        dtype = 'float64' if self.vtype == VariableType.NUMERIC else 'string'
        return pd.Series(self.cells, name=self.name, dtype=dtype)


class Dataset:
    """
    SAS data set decoded from an XPORT member.

    Holds library and member metadata, the variables in declared order,
    and the sizes used to frame the file's logical records.
    """

    def __init__(self, variables=(), library=None, member=None):
        """
        Initialize an empty or pre-populated data set.
        """
        self.library = library
        self.member = member
        self.variables = list(variables)
        self.descriptor_size = None
        self.variable_count = None
        self.row_width = None

    def __repr__(self):
        """REPL-format."""
        name = self.name if self.name else ''
        return (
            f'<{type(self).__name__} {name!r} variables={len(self.variables)} '
            f'rows={len(self)}>'
        )

    @property
    def name(self):
        return self.member.name if self.member is not None else None

    @property
    def label(self):
        return self.member.dataset_label if self.member is not None else None

    def __len__(self):
        """
        Number of observations.
        """
        if not self.variables:
            return 0
        return min(len(v.cells) for v in self.variables)

    def __iter__(self):
        """
        Iterate over the variables in declared order.
        """
        return iter(self.variables)

    def __getitem__(self, name):
        """
        Get a variable by name.
        """
        for v in self.variables:
            if v.name == name:
                return v
        raise KeyError(name)

    def __contains__(self, name):
        return any(v.name == name for v in self.variables)

    def keys(self):
        return [v.name for v in self.variables]

    def rows(self):
        """
        Yield observations as tuples in declared variable order.
        """
        return zip(*(v.cells for v in self.variables))

    def to_dataframe(self):
        """
        Copy the data set into a Pandas ``DataFrame``.
        """
        n = len(self)
        columns = {}
        for v in self.variables:
            series = v.to_series()
            columns[v.name] = series.iloc[:n]
        return pd.DataFrame(columns, columns=self.keys())

    @property
    def contents(self):
        """
        Variable metadata, such as label, format, number, and position.
        """
        df = pd.DataFrame([{
            'Variable': v.name,
            'Type': v.vtype.name.title(),
            'Length': v.length,
            'Format': str(v.format),
            'Informat': str(v.informat),
            'Label': v.label,
            'Position': v.position,
        } for v in self.variables], columns=[
            'Variable',
            'Type',
            'Length',
            'Format',
            'Informat',
            'Label',
            'Position',
        ])
        if df.empty:
            return df
        df.index = pd.Index([v.number for v in self.variables], name='#')
        df['Position'] = df['Position'].astype(pd.Int64Dtype())
        return df


def load(fp, encoding='ISO-8859-1'):
    """
    Decode a SAS Transport (XPORT) file from the binary file object ``fp``.

        >>> with open('example.xpt', 'rb') as f:
        ...     dataset = load(f)
    """
    # Avoid circular import problems.
    from xptdecode.v56 import load
    return load(fp, encoding=encoding)


def loads(bytestring, encoding='ISO-8859-1'):
    """
    Decode a SAS Transport (XPORT) document from a byte string.
    """
    from xptdecode.v56 import loads
    return loads(bytestring, encoding=encoding)
