# Copyright (c) 2014-2015  Sam Maloney.
# License: GPL v2.

width = 16

_printable = frozenset(range(0x20, 0x7f))

def hex_dump(data, offset=0, length=None):
    "Classic offset / hex / ascii dump, for DEBUG logging of packets."
    assert type(data) in (bytes, bytearray), type(data)

    if length == None:
        length = len(data)

    lines = []
    for start in range(offset, length, width):
        chunk = data[start:min(start + width, length)]

        hexcol = " ".join(\
            chunk[i:i+2].hex() for i in range(0, len(chunk), 2))
        asciicol = "".join(\
            chr(c) if c in _printable else "." for c in chunk)

        lines.append("{:#06x}   {:<40} {}"\
            .format(start - offset, hexcol, asciicol))

    return "\n".join(lines)
